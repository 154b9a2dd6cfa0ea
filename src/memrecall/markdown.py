"""MEMORY.md fact upserts and write-through re-indexing."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from memrecall.manager import MemoryIndexManager

LOGGER = logging.getLogger(__name__)

MEMORY_FILE_NAME = "MEMORY.md"
FACTS_SECTION = "## Important Facts"
MAX_FACT_CHARS = 280
MAX_MEMORY_LINES = 80

_UPDATE_PATTERNS = (
    re.compile(r"update\s+(?:your|ur)\s+memory(?:\s+to\s+this)?\s*[:,-]?\s*(.+)$", re.I),
    re.compile(r"remember\s+this\s*[:,-]?\s*(.+)$", re.I),
    re.compile(r"remember\s+that\s*[:,-]?\s*(.+)$", re.I),
)
_REQUEST_RE = re.compile(r"update\s+(?:your|ur)\s+memory|remember\s+this|remember\s+that", re.I)
_RELATION_RE = re.compile(r"^(?:my|our)\s+(.+?)\s+(?:is|are|was|were|equals|=)\s+(.+)$", re.I)
_MEMORY_MARKER_RE = re.compile(r"\[memory:[a-z0-9-]+\]", re.I)
_GENERAL_LINE_RE = re.compile(
    r"^\s*-\s+\d{4}-\d{2}-\d{2}:\s+\[memory:([a-z0-9-]+)\]\s*(.+)\s*$", re.I
)


@dataclass(slots=True)
class MemoryFact:
    fact: str
    key: str
    has_structured_field: bool


@dataclass(slots=True)
class WriteThroughResult:
    handled: bool
    response: str = ""
    memory_file_path: Optional[Path] = None
    reindex_ms: Optional[int] = None


def normalize_memory_field_key(raw_field: str) -> str:
    key = re.sub(r"[^a-z0-9]+", "-", str(raw_field or "").strip().lower())
    return key.strip("-")[:64]


def is_memory_update_request(text: str) -> bool:
    return bool(_REQUEST_RE.search(str(text or "").strip()))


def extract_memory_update_fact(text: str) -> str:
    raw = str(text or "").strip()
    for pattern in _UPDATE_PATTERNS:
        match = pattern.search(raw)
        if match:
            return match.group(1).strip()
    return ""


def build_memory_fact(fact_text: str, max_fact_chars: int = MAX_FACT_CHARS) -> MemoryFact:
    """Normalize a fact and derive a field key from "my X is Y" phrasing."""
    fact = " ".join(str(fact_text or "").split())[: max(60, max_fact_chars)]
    match = _RELATION_RE.match(fact)
    field = match.group(1).strip() if match else ""
    value = match.group(2).strip() if match else ""
    return MemoryFact(
        fact=fact,
        key=normalize_memory_field_key(field) if field else "",
        has_structured_field=bool(field and value),
    )


def memory_template() -> str:
    return "\n".join(
        [
            "# Persistent Memory",
            "This file is loaded into every conversation. Add important facts, decisions, and context here.",
            "",
            FACTS_SECTION,
            "",
        ]
    )


def upsert_memory_fact(
    existing: str, fact: str, key: str, *, today: Optional[date] = None
) -> str:
    """Insert a dated ``[memory:<key>]`` line at the top of the facts section.

    A keyed fact replaces any earlier line with the same key; a general fact
    replaces an identical general fact. Only the newest memory lines are kept.
    """
    content = str(existing or "")
    lines = content.splitlines() if content else memory_template().splitlines()
    stamp = (today or date.today()).isoformat()
    marker = f"[memory:{key}]" if key else "[memory:general]"
    memory_line = f"- {stamp}: {marker} {fact}"
    incoming = " ".join(fact.split()).lower()

    def keep(line: str) -> bool:
        if key:
            return marker not in line
        match = _GENERAL_LINE_RE.match(line)
        if not match or match.group(1).lower() != "general":
            return True
        return " ".join(match.group(2).split()).lower() != incoming

    kept = [line for line in lines if keep(line)]

    section_at = next(
        (idx for idx, line in enumerate(kept) if line.strip().lower() == FACTS_SECTION.lower()),
        None,
    )
    if section_at is None:
        if kept and kept[-1].strip():
            kept.append("")
        kept.extend([FACTS_SECTION, "", memory_line])
        return "\n".join(kept)

    insert_at = section_at + 1
    while insert_at < len(kept) and not kept[insert_at].strip():
        insert_at += 1
    kept.insert(insert_at, memory_line)

    memory_indexes = [idx for idx, line in enumerate(kept) if _MEMORY_MARKER_RE.search(line)]
    if len(memory_indexes) > MAX_MEMORY_LINES:
        drop = set(memory_indexes[MAX_MEMORY_LINES:])
        kept = [line for idx, line in enumerate(kept) if idx not in drop]
    return "\n".join(kept)


async def apply_memory_write_through(
    *,
    text: str,
    workspace_dir: Path,
    memory_manager: MemoryIndexManager,
) -> WriteThroughResult:
    """Persist a "remember this" request to MEMORY.md and re-index it immediately."""
    if not is_memory_update_request(text):
        return WriteThroughResult(handled=False)

    fact_text = extract_memory_update_fact(text)
    if not fact_text:
        return WriteThroughResult(
            handled=True, response="Tell me what to remember, e.g. 'remember this: ...'."
        )

    fact = build_memory_fact(fact_text)
    memory_file = Path(workspace_dir) / MEMORY_FILE_NAME
    memory_file.parent.mkdir(parents=True, exist_ok=True)
    existing = memory_file.read_text(encoding="utf-8") if memory_file.exists() else ""
    memory_file.write_text(upsert_memory_fact(existing, fact.fact, fact.key), encoding="utf-8")

    started = time.perf_counter()
    status = await memory_manager.index_file(memory_file)
    reindex_ms = int((time.perf_counter() - started) * 1000)
    LOGGER.info("Memory write-through %s (%s, %dms)", memory_file, status, reindex_ms)

    return WriteThroughResult(
        handled=True,
        response=f"Memory updated. I will remember: {fact.fact}",
        memory_file_path=memory_file,
        reindex_ms=reindex_ms,
    )
