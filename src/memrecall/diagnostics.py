"""Per-search diagnostics and degraded-mode event logging."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Optional

from memrecall.models import MemorySearchDiagnostics

LOGGER = logging.getLogger(__name__)

MAX_TRACKED_SEARCHES = 50


def log_degraded(
    logger: logging.Logger, *, phase: str, reason: str, mode: str, detail: str
) -> None:
    logger.warning(
        "[degraded] phase=%s reason=%s mode=%s detail=%s", phase, reason, mode, detail
    )


class DiagnosticsRecorder:
    """Keeps the last search snapshot plus a bounded, insertion-ordered history.

    Records are copied on the way in and on the way out so callers can never
    mutate stored state.
    """

    def __init__(self, capacity: int = MAX_TRACKED_SEARCHES) -> None:
        self.capacity = max(1, capacity)
        self._last = MemorySearchDiagnostics()
        self._by_id: "OrderedDict[str, MemorySearchDiagnostics]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._by_id)

    def record(self, search_id: str, diagnostics: MemorySearchDiagnostics) -> None:
        self._last = replace(diagnostics)
        self._by_id.pop(search_id, None)
        self._by_id[search_id] = replace(diagnostics)
        while len(self._by_id) > self.capacity:
            evicted, _ = self._by_id.popitem(last=False)
            LOGGER.debug("Evicted diagnostics for search %s", evicted)

    def last(self) -> MemorySearchDiagnostics:
        return replace(self._last)

    def get(self, search_id: str) -> Optional[MemorySearchDiagnostics]:
        key = str(search_id or "").strip()
        if not key:
            return None
        found = self._by_id.get(key)
        return replace(found) if found is not None else None
