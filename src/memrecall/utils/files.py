"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator

MARKDOWN_SUFFIXES = (".md",)


def iter_markdown_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield markdown paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_markdown_paths(
                sorted(child for child in item.rglob("*") if child.is_file())
            )
        elif item.is_file() and item.suffix.lower() in MARKDOWN_SUFFIXES:
            yield item


def hash_text(text: str) -> str:
    """Short SHA256 digest used for file, chunk and cache keys."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def read_text_or_none(path: Path) -> str | None:
    """Read a UTF-8 file as-is, returning None when it is missing or unreadable.

    Line endings are preserved, so ``\\r\\n`` files round-trip unchanged.
    """
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as handle:
            return handle.read()
    except OSError:
        return None
