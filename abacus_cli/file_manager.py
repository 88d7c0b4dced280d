"""
File analyzer: reads project files, computes per-file statistics and
aggregates directory-wide counts.

All paths handed to or returned from :class:`FileManager` are relative to its
working directory.  Errors from the filesystem (``OSError`` and subclasses)
are never swallowed; a single unreadable entry fails a whole directory scan.
"""

from __future__ import annotations

import glob
import hashlib
import logging
import os
import stat
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exclusion rules
# ---------------------------------------------------------------------------

# Version-control metadata, dependency caches and the tool's own state dir.
DEFAULT_IGNORE_DIRS: frozenset[str] = frozenset({
    ".git",
    "node_modules",
    ".abacus",
})

NO_EXTENSION = "no-extension"

ProgressCallback = Callable[[int, int, str], None]


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileAnalysis:
    """Size, content hash and naive line count of a single file."""
    size: int
    hash: str
    lines: int


@dataclass(frozen=True)
class FileEntry:
    """A file matched by :meth:`FileManager.find_files`."""
    path: str
    type: str
    size: int


@dataclass
class DirectoryStats:
    """Aggregate counts for everything under the working directory."""
    files: int = 0
    directories: int = 0
    total_size: int = 0
    type_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class _EntryStat:
    """Partial result produced by one stat task."""
    path: str
    is_dir: bool
    size: int


# ---------------------------------------------------------------------------
# Pattern helpers
# ---------------------------------------------------------------------------

def expand_braces(pattern: str) -> list[str]:
    """
    Expand ``{a,b}`` alternatives in a glob pattern.

    ``"src/**/*.{ts,js}"`` becomes ``["src/**/*.ts", "src/**/*.js"]``.
    Nested groups are expanded recursively; a ``{`` without a matching ``}``
    is kept literally.
    """
    start = pattern.find("{")
    while start != -1:
        depth = 0
        commas: list[int] = []
        for i in range(start, len(pattern)):
            ch = pattern[i]
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    break
            elif ch == "," and depth == 1:
                commas.append(i)
        else:
            return [pattern]

        end = i
        if not commas:
            # "{x}" is not an alternative group; look for the next one
            start = pattern.find("{", start + 1)
            continue

        prefix, suffix = pattern[:start], pattern[end + 1:]
        bounds = [start] + commas + [end]
        expanded: list[str] = []
        for lo, hi in zip(bounds, bounds[1:]):
            for alt in expand_braces(pattern[lo + 1:hi] + suffix):
                expanded.append(prefix + alt)
        return expanded
    return [pattern]


def file_extension(name: str) -> str:
    """Return the lowercase text after the last ``.`` of *name*, or ``""``."""
    base = os.path.basename(name)
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[1].lower()


# ---------------------------------------------------------------------------
# FileManager
# ---------------------------------------------------------------------------

class FileManager:
    """
    Reads, lists and measures files under a project directory.

    Parameters
    ----------
    working_directory:
        Root that every relative path is resolved against.  Defaults to the
        current working directory.
    ignore_dirs:
        Extra directories to exclude, on top of :data:`DEFAULT_IGNORE_DIRS`.
        A bare name is excluded at any depth; a relative path such as
        ``var/abacus`` is excluded from the working directory root.
    max_workers:
        Upper bound on concurrent stat calls in :meth:`analyze_directory`.
    """

    def __init__(
        self,
        working_directory: Optional[str] = None,
        ignore_dirs: Optional[Iterable[str]] = None,
        max_workers: int = 8,
    ) -> None:
        self.working_directory = os.path.abspath(working_directory or os.getcwd())
        entries = {
            os.path.normpath(d).replace(os.sep, "/").strip("/")
            for d in (*DEFAULT_IGNORE_DIRS, *(ignore_dirs or ()))
        }
        entries.discard(".")
        # Single names match at any depth; "a/b" entries match from the root.
        self.ignore_dirs = frozenset(e for e in entries if "/" not in e)
        self.ignore_prefixes = tuple(sorted(e for e in entries if "/" in e))
        self.max_workers = max(1, max_workers)

    def _full_path(self, path: str) -> str:
        return os.path.join(self.working_directory, path)

    def _is_ignored(self, rel_path: str) -> bool:
        if any(part in self.ignore_dirs for part in rel_path.split("/")):
            return True
        return any(
            rel_path == prefix or rel_path.startswith(prefix + "/")
            for prefix in self.ignore_prefixes
        )

    # ------------------------------------------------------------------
    # Single files
    # ------------------------------------------------------------------

    def read_file(self, path: str) -> str:
        """Return the UTF-8 text of *path*; raises ``OSError`` if unreadable."""
        with open(self._full_path(path), "r", encoding="utf-8", errors="replace",
                  newline="") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        """Write *content* to *path* as UTF-8, replacing any existing file."""
        with open(self._full_path(path), "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.debug("Wrote %d chars to %s", len(content), path)

    def analyze_file(self, path: str) -> FileAnalysis:
        """
        Compute size, SHA-256 hash and line count of *path*.

        ``lines`` is the number of newline-delimited segments, so a trailing
        newline yields one extra (empty) segment.
        """
        full_path = self._full_path(path)
        with open(full_path, "rb") as f:
            raw = f.read()
        size = os.stat(full_path).st_size
        content = raw.decode("utf-8", errors="replace")
        return FileAnalysis(
            size=size,
            hash=hashlib.sha256(raw).hexdigest(),
            lines=len(content.split("\n")),
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_files(self, pattern: str) -> list[str]:
        """
        Return relative paths matching the glob *pattern*.

        Supports ``**`` recursion and ``{a,b}`` alternatives.  Paths under any
        ignored directory are dropped.  Order follows the filesystem
        traversal and must not be relied upon.
        """
        seen: dict[str, None] = {}
        for sub_pattern in expand_braces(pattern):
            for match in glob.iglob(sub_pattern, root_dir=self.working_directory,
                                    recursive=True):
                rel_path = match.replace(os.sep, "/").rstrip("/")
                if not rel_path or self._is_ignored(rel_path):
                    continue
                seen.setdefault(rel_path, None)
        logger.debug("Pattern %r matched %d path(s)", pattern, len(seen))
        return list(seen)

    def find_files(self, pattern: str) -> list[FileEntry]:
        """Return every match of *pattern* with its extension and size."""
        entries = []
        for rel_path in self.list_files(pattern):
            st = os.stat(self._full_path(rel_path))
            entries.append(FileEntry(
                path=rel_path,
                type=file_extension(rel_path) or "unknown",
                size=st.st_size,
            ))
        return entries

    # ------------------------------------------------------------------
    # Directory aggregate
    # ------------------------------------------------------------------

    def _stat_entry(self, rel_path: str) -> _EntryStat:
        st = os.stat(self._full_path(rel_path))
        is_dir = stat.S_ISDIR(st.st_mode)
        return _EntryStat(path=rel_path, is_dir=is_dir, size=0 if is_dir else st.st_size)

    def analyze_directory(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DirectoryStats:
        """
        Count files and directories under the working directory.

        Every entry is stat'ed in a thread pool; each task returns its own
        immutable partial result and the partials are reduced once all tasks
        have finished, so completion order does not affect the totals.  The
        first failing stat aborts the scan and its ``OSError`` propagates.

        Parameters
        ----------
        progress_callback:
            Optional ``(current, total, path)`` callable invoked once per
            completed entry.
        """
        entries = self.list_files("**/*")
        total = len(entries)
        partials: list[_EntryStat] = []

        if entries:
            workers = min(total, self.max_workers)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {pool.submit(self._stat_entry, e): e for e in entries}
                for future in as_completed(futures):
                    partial = future.result()
                    partials.append(partial)
                    if progress_callback is not None:
                        progress_callback(len(partials), total, partial.path)

        stats = _reduce(partials)
        logger.debug(
            "Scanned %s: %d file(s), %d dir(s), %d bytes",
            self.working_directory, stats.files, stats.directories, stats.total_size,
        )
        return stats


def _reduce(partials: Iterable[_EntryStat]) -> DirectoryStats:
    """Fold partial stat results into a :class:`DirectoryStats`."""
    files = directories = total_size = 0
    breakdown: Counter[str] = Counter()
    for p in partials:
        if p.is_dir:
            directories += 1
            continue
        files += 1
        total_size += p.size
        breakdown[file_extension(p.path) or NO_EXTENSION] += 1
    return DirectoryStats(
        files=files,
        directories=directories,
        total_size=total_size,
        type_breakdown=dict(breakdown),
    )
