"""Tests for diagnostics recording and degraded logging."""

from __future__ import annotations

import logging

from memrecall.diagnostics import MAX_TRACKED_SEARCHES, DiagnosticsRecorder, log_degraded
from memrecall.models import MemorySearchDiagnostics


class TestDiagnosticsRecorder:
    """Test DiagnosticsRecorder."""

    def test_default_last(self) -> None:
        last = DiagnosticsRecorder().last()
        assert last.has_search is False
        assert last.mode == "hybrid"
        assert last.fallback_reason is None

    def test_record_and_get(self) -> None:
        recorder = DiagnosticsRecorder()
        recorder.record("s1", MemorySearchDiagnostics(has_search=True, result_count=3))

        assert recorder.get("s1").result_count == 3
        assert recorder.last().result_count == 3

    def test_unknown_and_blank_ids(self) -> None:
        recorder = DiagnosticsRecorder()
        recorder.record("s1", MemorySearchDiagnostics(has_search=True))

        assert recorder.get("missing") is None
        assert recorder.get("") is None
        assert recorder.get("  ") is None

    def test_bounded_history(self) -> None:
        recorder = DiagnosticsRecorder()
        for i in range(MAX_TRACKED_SEARCHES + 5):
            recorder.record(f"s{i}", MemorySearchDiagnostics(has_search=True, result_count=i))

        assert len(recorder) == MAX_TRACKED_SEARCHES
        assert recorder.get("s0") is None
        assert recorder.get("s4") is None
        assert recorder.get("s5").result_count == 5
        assert recorder.last().result_count == MAX_TRACKED_SEARCHES + 4

    def test_rerecording_refreshes_position(self) -> None:
        recorder = DiagnosticsRecorder(capacity=2)
        recorder.record("a", MemorySearchDiagnostics())
        recorder.record("b", MemorySearchDiagnostics())
        recorder.record("a", MemorySearchDiagnostics(result_count=9))
        recorder.record("c", MemorySearchDiagnostics())

        assert recorder.get("b") is None
        assert recorder.get("a").result_count == 9

    def test_returns_copies(self) -> None:
        recorder = DiagnosticsRecorder()
        diag = MemorySearchDiagnostics(has_search=True, result_count=1)
        recorder.record("s1", diag)

        diag.result_count = 99
        recorder.get("s1").result_count = 42
        recorder.last().result_count = 42

        assert recorder.get("s1").result_count == 1
        assert recorder.last().result_count == 1


class TestLogDegraded:
    """Test the degraded event log line."""

    def test_format(self, caplog) -> None:
        logger = logging.getLogger("memrecall.test")
        with caplog.at_level(logging.WARNING, logger="memrecall.test"):
            log_degraded(
                logger,
                phase="search",
                reason="stale-index",
                mode="fallback-lexical",
                detail="sources=2",
            )

        assert (
            "[degraded] phase=search reason=stale-index mode=fallback-lexical detail=sources=2"
            in caplog.text
        )
