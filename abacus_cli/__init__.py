"""
abacus_cli: code-focused CLI with a project-local searchable memory.

Public API for library usage::

    from abacus_cli import FileManager, MemoryStore, calculate_diff

    with MemoryStore(".abacus/memory.db") as store:
        store.store_code_context("src/app.ts", FileManager().read_file("src/app.ts"))
"""

__version__ = "0.1.0"

from .diff import DiffSummary, calculate_diff
from .file_manager import DirectoryStats, FileAnalysis, FileEntry, FileManager
from .memory_store import MemoryStore, StoreError

__all__ = [
    "DiffSummary",
    "DirectoryStats",
    "FileAnalysis",
    "FileEntry",
    "FileManager",
    "MemoryStore",
    "StoreError",
    "calculate_diff",
]
