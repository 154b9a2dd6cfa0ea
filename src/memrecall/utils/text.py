"""Text helpers: window chunking, tokenization and query keywords."""

from __future__ import annotations

import math
import re
from typing import Iterator, List

from memrecall.models import ChunkRecord
from memrecall.utils.files import hash_text

_TOKEN_RE = re.compile(r"[a-z0-9_]+")

STOPWORDS = frozenset(
    {
        "a",
        "about",
        "an",
        "and",
        "any",
        "are",
        "as",
        "at",
        "be",
        "by",
        "can",
        "did",
        "do",
        "does",
        "for",
        "from",
        "how",
        "i",
        "in",
        "is",
        "it",
        "me",
        "my",
        "of",
        "on",
        "or",
        "our",
        "please",
        "that",
        "the",
        "this",
        "to",
        "was",
        "we",
        "were",
        "what",
        "when",
        "where",
        "which",
        "who",
        "why",
        "with",
        "you",
        "your",
    }
)


def chunk_text(text: str, *, max_chars: int = 1200, overlap: int = 200) -> Iterator[str]:
    """Split text into overlapping character chunks.

    This coarse chunker keeps things simple while preserving context overlap.
    Windows stop once one reaches the end of the text, so the last window may
    be shorter than ``max_chars``.
    """
    if not text:
        return iter(())
    return _iter_windows(text, max_chars, overlap)


def _iter_windows(text: str, max_chars: int, overlap: int) -> Iterator[str]:
    max_chars = max(1, max_chars)
    step = max(max_chars - max(0, overlap), 1)
    for start in range(0, len(text), step):
        yield text[start : start + max_chars]
        if start + max_chars >= len(text):
            break


def chunk_id(source: str, index: int) -> str:
    """Stable chunk id derived from the source path and window position."""
    return f"{hash_text(source)}:{index}"


def chunk_markdown(
    content: str, source: str, chunk_size: int, chunk_overlap: int
) -> List[ChunkRecord]:
    """Chunk a markdown document into id-tagged windows.

    Markdown is treated as plain text; identical input always yields the same
    boundaries and ids.
    """
    return [
        ChunkRecord(id=chunk_id(source, index), index=index, content=window)
        for index, window in enumerate(
            chunk_text(content, max_chars=chunk_size, overlap=chunk_overlap)
        )
    ]


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(str(text or "").lower())


def extract_query_keywords(query: str) -> List[str]:
    """Return the distinct non-stopword tokens of a query, in order."""
    seen: set[str] = set()
    keywords: List[str] = []
    for token in tokenize(query):
        if token in STOPWORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


def expand_query(query: str) -> str:
    """Reduce a natural-language query to the terms worth matching lexically."""
    keywords = extract_query_keywords(query)
    if keywords:
        return " ".join(keywords)
    return " ".join(tokenize(query))


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / 3.5)


def split_sentences(text: str) -> List[str]:
    collapsed = re.sub(r"\s+", " ", str(text or ""))
    return [part.strip() for part in re.split(r"(?<=[.!?])\s+", collapsed) if part.strip()]
