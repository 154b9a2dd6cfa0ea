"""Prompt-ready recall context assembled from memory search results."""

from __future__ import annotations

import logging
import re
from pathlib import PurePath
from typing import List, Sequence

from memrecall.manager import MemoryIndexManager
from memrecall.utils.text import estimate_tokens, extract_query_keywords, split_sentences, tokenize

LOGGER = logging.getLogger(__name__)

RECALL_SECTION_HEADER = "## Live Memory Recall"
RECALL_SECTION_INTRO = "Use this indexed context when relevant:"
SNIPPET_MAX_CHARS = 600
BLOCK_SEPARATOR = "\n\n"


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)].rstrip() + "..."


def source_label(source: str) -> str:
    """Last two path components, enough to tell sources apart in a prompt."""
    parts = [part for part in PurePath(str(source or "").replace("\\", "/")).parts if part != "/"]
    if not parts:
        return "unknown"
    return "/".join(parts[-2:])


def fingerprint(text: str) -> str:
    normalized = re.sub(r"\s+", " ", str(text or "").lower())
    normalized = re.sub(r"[^a-z0-9 ]+", "", normalized).strip()
    return normalized[:180]


def extract_salient_snippet(
    content: str, query_keywords: Sequence[str], max_chars: int = SNIPPET_MAX_CHARS
) -> str:
    """Pick the sentences of ``content`` that best match the query, within ``max_chars``.

    Sentences are ranked by keyword overlap, keyword density and an early
    position bias; selected sentences are joined in rank order.
    """
    sentences = split_sentences(content)
    if not sentences:
        return truncate(str(content or "").strip(), max_chars)

    keywords = set(query_keywords)
    ranked = []
    for idx, sentence in enumerate(sentences):
        tokens = tokenize(sentence)
        overlap = sum(1 for token in tokens if token in keywords)
        density = overlap / len(tokens) if tokens else 0.0
        position_bias = max(0.0, 1 - idx * 0.04)
        ranked.append((overlap * 1.5 + density * 2 + position_bias, idx, sentence))
    ranked.sort(key=lambda item: (-item[0], item[1]))

    selected: List[str] = []
    used = 0
    for _, _, sentence in ranked:
        extra = len(sentence) + (1 if selected else 0)
        if used + extra > max_chars:
            continue
        selected.append(sentence)
        used += extra
        if used >= max_chars * 0.85:
            break

    if not selected:
        return truncate(sentences[0], max_chars)
    return truncate(" ".join(selected), max_chars)


async def build_memory_recall_context(
    *,
    memory_manager: MemoryIndexManager,
    query: str,
    top_k: int = 3,
    max_chars: int = 2200,
    max_tokens: int = 480,
) -> str:
    """Search memory and pack numbered, source-tagged blocks into the budgets.

    Blocks are added in rank order until the next one would push the joined
    text past ``max_chars`` or past ``max_tokens`` (estimated as
    ``ceil(chars / 3.5)``); a block that does not fit ends the context, it is
    never cut.
    """
    query = str(query or "").strip()
    if not query:
        return ""

    top_k = max(1, int(top_k))
    max_chars = max(0, int(max_chars))
    max_tokens = max(0, int(max_tokens))
    keywords = extract_query_keywords(query)

    results = await memory_manager.search(query, top_k)
    if not results:
        return ""

    blocks: List[str] = []
    context = ""
    seen: set[str] = set()
    for result in results:
        snippet = extract_salient_snippet(str(result.content or "").strip(), keywords)
        if not snippet:
            continue
        fp = fingerprint(snippet)
        if not fp or fp in seen:
            continue
        seen.add(fp)

        block = f"[{len(blocks) + 1}] {source_label(result.source)}\n{snippet}"
        candidate = BLOCK_SEPARATOR.join([*blocks, block])
        if len(candidate) > max_chars or estimate_tokens(candidate) > max_tokens:
            LOGGER.debug("Recall budget reached after %d blocks", len(blocks))
            break
        blocks.append(block)
        context = candidate

    return context


def inject_memory_recall_section(prompt: str, recall_context: str) -> str:
    """Append the recall section once; a no-op for empty context or a prompt that has it."""
    base = str(prompt or "")
    context = str(recall_context or "").strip()
    if not context or RECALL_SECTION_HEADER in base:
        return base
    return f"{base}\n\n{RECALL_SECTION_HEADER}\n{RECALL_SECTION_INTRO}\n{context}"
