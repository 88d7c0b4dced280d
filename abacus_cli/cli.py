"""
`abacus` command-line interface.

Commands
--------
abacus analyze [--pattern GLOB]               -- project overview
abacus explain <file> [--tags a,b]            -- analyze a file and store its context
abacus search "<query>"                       -- keyword search over stored memory
abacus diff <file1> <file2>                   -- line-presence diff, recorded in history
abacus annotate <context_id> -p ... -r ...    -- attach a prompt/response to a context
abacus history [file] [-n N]                  -- show recorded file operations
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from datetime import datetime
from typing import Optional

from tqdm import tqdm

from . import __version__
from .config import Config
from .diff import DiffSummary, calculate_diff
from .file_manager import FileManager
from .memory_store import MemoryStore, StoreError

logger = logging.getLogger(__name__)


class ArgumentError(ValueError):
    """Raised for command arguments argparse cannot validate on its own."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _project_root() -> str:
    """Return the current working directory as project root."""
    return os.getcwd()


def _file_manager(cfg: Config) -> FileManager:
    return FileManager(
        _project_root(),
        ignore_dirs=[cfg.STATE_DIR, *cfg.IGNORE_DIRS],
        max_workers=cfg.MAX_WORKERS,
    )


def _open_store(cfg: Config) -> MemoryStore:
    return MemoryStore(cfg.db_path(_project_root()))


def _parse_tags(raw: str) -> list[str]:
    """Split a comma-separated tag list; an empty string means no tags."""
    if not raw:
        return []
    tags = [t.strip() for t in raw.split(",")]
    if not all(tags):
        raise ArgumentError(f"Empty tag in {raw!r}")
    return tags


def _format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _heading(title: str) -> None:
    print(f"\n{title}:")
    print("-" * (len(title) + 1))


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_analyze(args: argparse.Namespace, cfg: Config) -> None:
    """Print directory statistics and a summary of files matching the pattern."""
    print("Analyzing code structure...")
    fm = _file_manager(cfg)

    pbar = tqdm(total=None, unit="entry", desc="Scanning", leave=False,
                disable=not cfg.PROGRESS)

    def _progress(current: int, total: int, path: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.update(1)

    try:
        stats = fm.analyze_directory(progress_callback=_progress)
    finally:
        pbar.close()

    _heading("Project Overview")
    print(f"Total Files: {stats.files}")
    print(f"Total Directories: {stats.directories}")
    print(f"Total Size: {stats.total_size / 1024 / 1024:.2f} MB")

    _heading("File Types")
    for ext, count in sorted(stats.type_breakdown.items(), key=lambda kv: (-kv[1], kv[0])):
        print(f"{ext}: {count} files")

    pattern = args.pattern or cfg.DEFAULT_PATTERN
    matches = fm.find_files(pattern)
    matched_size = sum(m.size for m in matches)
    print(f"\nFiles matching {pattern}: {len(matches)} ({matched_size / 1024:.2f} KB)")


def _cmd_explain(args: argparse.Namespace, cfg: Config) -> None:
    """Analyze one file and store its content as a new context."""
    tags = _parse_tags(args.tags)
    fm = _file_manager(cfg)

    print(f"Reading file: {args.file}")
    content = fm.read_file(args.file)
    analysis = fm.analyze_file(args.file)

    with _open_store(cfg) as store:
        context_id = store.store_code_context(args.file, content, tags)

    _heading("File Analysis")
    print(f"Size: {analysis.size / 1024:.2f} KB")
    print(f"Lines: {analysis.lines}")
    print(f"Hash: {analysis.hash}")
    if tags:
        print(f"Tags: {', '.join(tags)}")

    print(f"\nStored in memory with context ID: {context_id}")


def _cmd_search(args: argparse.Namespace, cfg: Config) -> None:
    """Keyword search over stored contexts and conversations."""
    print(f"Searching for: {args.query}")
    with _open_store(cfg) as store:
        results = store.search_memory(args.query)

    if not results:
        print("No results found.")
        return

    _heading("Search Results")
    for index, result in enumerate(results, start=1):
        print(f"\n[{index}] {result.file_path}  ({_format_time(result.last_modified)})")
        if result.tags:
            print(f"Tags: {', '.join(result.tags)}")
        if result.prompt:
            print(f"Prompt: {result.prompt}")
            print(f"Response: {result.response}")


def _cmd_diff(args: argparse.Namespace, cfg: Config) -> None:
    """Compare two files and record the result as a modify operation."""
    print(f"Comparing {args.file1} with {args.file2}")
    fm = _file_manager(cfg)
    old_content = fm.read_file(args.file1)
    new_content = fm.read_file(args.file2)

    diff = calculate_diff(old_content, new_content)

    _heading("Difference Analysis")
    print(f"Lines Added: {diff.added}")
    print(f"Lines Removed: {diff.removed}")
    print(f"Lines Changed: {diff.changed}")

    with _open_store(cfg) as store:
        store.store_file_operation(
            f"{args.file1} -> {args.file2}",
            "modify",
            diff.to_json(),
            {
                "size_bytes": abs(len(new_content) - len(old_content)),
                "lines_changed": diff.changed,
            },
        )


def _cmd_annotate(args: argparse.Namespace, cfg: Config) -> None:
    """Record a prompt/response pair against a stored context."""
    if args.tokens < 0 or args.duration_ms < 0:
        raise ArgumentError("--tokens and --duration-ms must not be negative")

    t0 = time.perf_counter()
    with _open_store(cfg) as store:
        store.store_conversation(
            args.context_id,
            args.prompt,
            args.response,
            {
                "model": args.model,
                "tokens_used": args.tokens,
                "duration_ms": args.duration_ms,
            },
        )
    logger.info("Annotation stored in %.1fms", (time.perf_counter() - t0) * 1000)
    print(f"Recorded conversation for context ID: {args.context_id}")


def _cmd_history(args: argparse.Namespace, cfg: Config) -> None:
    """Show recorded file operations, newest first."""
    if args.limit < 1:
        raise ArgumentError("--limit must be at least 1")

    with _open_store(cfg) as store:
        rows = store.get_file_history(args.file, limit=args.limit)

    if not rows:
        print("No file history recorded.")
        return

    _heading("File History")
    for row in rows:
        try:
            summary = DiffSummary.from_json(row.diff)
            detail = f"+{summary.added} -{summary.removed} ~{summary.changed}"
        except (ValueError, KeyError, TypeError):
            detail = row.diff
        print(
            f"{_format_time(row.timestamp)}  {row.operation:<6}  {row.file_path}  "
            f"{detail}  ({row.metadata.size_bytes} bytes, "
            f"{row.metadata.lines_changed} lines)"
        )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the `abacus` argument parser."""
    parser = argparse.ArgumentParser(
        prog="abacus",
        description="Code-focused CLI: project statistics, diffs and a local searchable memory",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--config", default=None, metavar="PATH",
                        help="Path to an .abacus.yaml config file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- analyze ---
    analyze_p = subparsers.add_parser(
        "analyze", help="Analyze code structure in current directory",
    )
    analyze_p.add_argument(
        "-p", "--pattern", default=None,
        help="File pattern to summarise (default from config: **/*.{ts,js,tsx,jsx})",
    )
    analyze_p.set_defaults(func=_cmd_analyze, action="analyzing directory")

    # --- explain ---
    explain_p = subparsers.add_parser("explain", help="Explain code in a file")
    explain_p.add_argument("file", help="File to explain")
    explain_p.add_argument(
        "-t", "--tags", default="",
        help="Comma-separated tags to associate with the code",
    )
    explain_p.set_defaults(func=_cmd_explain, action="explaining code")

    # --- search ---
    search_p = subparsers.add_parser("search", help="Search through code memory")
    search_p.add_argument("query", help="Search query")
    search_p.set_defaults(func=_cmd_search, action="searching memory")

    # --- diff ---
    diff_p = subparsers.add_parser("diff", help="Show differences between two files")
    diff_p.add_argument("file1", help="First file")
    diff_p.add_argument("file2", help="Second file")
    diff_p.set_defaults(func=_cmd_diff, action="calculating diff")

    # --- annotate ---
    annotate_p = subparsers.add_parser(
        "annotate", help="Attach a prompt/response pair to a stored context",
    )
    annotate_p.add_argument("context_id", type=int, help="Context ID printed by `explain`")
    annotate_p.add_argument("-p", "--prompt", required=True, help="Prompt text")
    annotate_p.add_argument("-r", "--response", required=True, help="Response text")
    annotate_p.add_argument("--model", default="manual", help="Model name (default: manual)")
    annotate_p.add_argument("--tokens", type=int, default=0, help="Tokens used (default: 0)")
    annotate_p.add_argument(
        "--duration-ms", dest="duration_ms", type=int, default=0,
        help="Response time in milliseconds (default: 0)",
    )
    annotate_p.set_defaults(func=_cmd_annotate, action="storing annotation")

    # --- history ---
    history_p = subparsers.add_parser("history", help="Show recorded file operations")
    history_p.add_argument("file", nargs="?", default=None,
                           help="Only show operations for this path")
    history_p.add_argument(
        "-n", "--limit", type=int, default=10,
        help="Number of entries to show (default: 10)",
    )
    history_p.set_defaults(func=_cmd_history, action="reading history")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _configure_logging(args: argparse.Namespace, cfg: Config) -> None:
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = getattr(logging, cfg.LOG_LEVEL, logging.WARNING)

    # Configure logging if not already configured
    if not logging.root.handlers:
        logging.basicConfig(
            level=level,
            format="%(levelname)s  %(name)s  %(message)s",
        )
    else:
        logging.root.setLevel(level)


def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for the `abacus` console script.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv if None.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    _configure_logging(args, cfg)
    logger.debug("Command %s with config state_dir=%s", args.command, cfg.STATE_DIR)

    try:
        args.func(args, cfg)
    except (OSError, StoreError, ArgumentError) as exc:
        print(f"Error {args.action}: {exc}", file=sys.stderr)
        sys.exit(1)
