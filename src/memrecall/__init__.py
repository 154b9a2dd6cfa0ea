"""Hybrid recall engine over markdown memory files."""

from memrecall.config import MemoryConfig, SearchTuning
from memrecall.manager import MemoryIndexManager
from memrecall.models import MemorySearchDiagnostics, SearchResult
from memrecall.recall import build_memory_recall_context, inject_memory_recall_section

__all__ = [
    "MemoryConfig",
    "MemoryIndexManager",
    "MemorySearchDiagnostics",
    "SearchResult",
    "SearchTuning",
    "build_memory_recall_context",
    "inject_memory_recall_section",
]

__version__ = "0.1.0"
