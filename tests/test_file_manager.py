"""
Unit tests for abacus_cli.file_manager
"""

from __future__ import annotations

import hashlib
import os

import pytest

from abacus_cli.file_manager import (
    NO_EXTENSION,
    FileManager,
    expand_braces,
    file_extension,
)


@pytest.fixture
def project(tmp_path):
    """Three files (10, 20, 30 bytes) and one subdirectory, plus ignored dirs."""
    (tmp_path / "a.ts").write_text("0123456789")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "b.js").write_text("x" * 20)
    (tmp_path / "README").write_text("y" * 30)

    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / "index.js").write_text("module.exports = 1;\n")
    (tmp_path / ".abacus").mkdir()
    (tmp_path / ".abacus" / "memory.db").write_bytes(b"\x00" * 64)
    return tmp_path


# ---------------------------------------------------------------------------
# Pattern helpers
# ---------------------------------------------------------------------------

class TestExpandBraces:

    def test_no_braces(self):
        assert expand_braces("**/*.py") == ["**/*.py"]

    def test_single_group(self):
        assert expand_braces("**/*.{ts,js,tsx,jsx}") == [
            "**/*.ts", "**/*.js", "**/*.tsx", "**/*.jsx",
        ]

    def test_multiple_groups(self):
        assert expand_braces("{a,b}/{c,d}") == ["a/c", "a/d", "b/c", "b/d"]

    def test_nested_group(self):
        assert expand_braces("*.{py,{ts,js}}") == ["*.py", "*.ts", "*.js"]

    def test_single_item_group_is_literal(self):
        assert expand_braces("{x}.py") == ["{x}.py"]

    def test_unbalanced_brace_is_literal(self):
        assert expand_braces("*.{ts,js") == ["*.{ts,js"]


class TestFileExtension:

    @pytest.mark.parametrize("name, expected", [
        ("main.py", "py"),
        ("src/archive.TAR.GZ", "gz"),
        ("Makefile", ""),
        ("pkg.d/Makefile", ""),
        (".env", "env"),
        ("trailing.", ""),
    ])
    def test_extension(self, name, expected):
        assert file_extension(name) == expected


# ---------------------------------------------------------------------------
# Single files
# ---------------------------------------------------------------------------

class TestReadWrite:

    def test_read_relative_to_working_directory(self, project):
        fm = FileManager(str(project))
        assert fm.read_file("src/b.js") == "x" * 20

    def test_read_missing_file_raises(self, project):
        fm = FileManager(str(project))
        with pytest.raises(OSError):
            fm.read_file("does/not/exist.py")

    def test_read_directory_raises(self, project):
        fm = FileManager(str(project))
        with pytest.raises(OSError):
            fm.read_file("src")

    def test_write_then_read(self, tmp_path):
        fm = FileManager(str(tmp_path))
        fm.write_file("notes.md", "line one\r\nline two\n")
        assert fm.read_file("notes.md") == "line one\r\nline two\n"

    def test_defaults_to_cwd(self, project, monkeypatch):
        monkeypatch.chdir(project)
        assert FileManager().read_file("a.ts") == "0123456789"


class TestAnalyzeFile:

    def test_size_hash_lines(self, tmp_path):
        (tmp_path / "f.txt").write_bytes(b"a\nb\n")
        result = FileManager(str(tmp_path)).analyze_file("f.txt")
        assert result.size == 4
        assert result.hash == hashlib.sha256(b"a\nb\n").hexdigest()
        # trailing newline yields an extra empty segment
        assert result.lines == 3

    def test_empty_file_has_one_line(self, tmp_path):
        (tmp_path / "empty").write_bytes(b"")
        result = FileManager(str(tmp_path)).analyze_file("empty")
        assert result.size == 0
        assert result.lines == 1

    def test_hash_is_deterministic_lowercase_hex(self, tmp_path):
        (tmp_path / "one.txt").write_text("same content")
        (tmp_path / "two.txt").write_text("same content")
        (tmp_path / "three.txt").write_text("other content")
        fm = FileManager(str(tmp_path))
        h1 = fm.analyze_file("one.txt").hash
        assert h1 == fm.analyze_file("one.txt").hash
        assert h1 == fm.analyze_file("two.txt").hash
        assert h1 != fm.analyze_file("three.txt").hash
        assert h1 == h1.lower()
        assert len(h1) == 64

    def test_hash_covers_raw_bytes(self, tmp_path):
        raw = "naïve\n".encode("utf-8")
        (tmp_path / "u.txt").write_bytes(raw)
        result = FileManager(str(tmp_path)).analyze_file("u.txt")
        assert result.hash == hashlib.sha256(raw).hexdigest()
        assert result.size == len(raw)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            FileManager(str(tmp_path)).analyze_file("ghost.py")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListFiles:

    def test_brace_pattern(self, project):
        fm = FileManager(str(project))
        assert set(fm.list_files("**/*.{ts,js}")) == {"a.ts", "src/b.js"}

    def test_excludes_control_directories(self, project):
        fm = FileManager(str(project))
        paths = fm.list_files("**/*")
        assert not any(p.startswith("node_modules") for p in paths)
        assert not any(p.startswith(".git") for p in paths)
        assert not any(p.startswith(".abacus") for p in paths)

    def test_explicit_ignored_pattern_returns_nothing(self, project):
        fm = FileManager(str(project))
        assert fm.list_files("node_modules/**/*.js") == []

    def test_extra_ignore_dirs(self, project):
        fm = FileManager(str(project), ignore_dirs=["src"])
        assert set(fm.list_files("**/*")) == {"a.ts", "README"}

    def test_top_level_only(self, project):
        fm = FileManager(str(project))
        assert fm.list_files("*.ts") == ["a.ts"]

    def test_overlapping_alternatives_reported_once(self, project):
        fm = FileManager(str(project))
        assert fm.list_files("{*.ts,a.*}") == ["a.ts"]

    def test_no_matches(self, project):
        assert FileManager(str(project)).list_files("**/*.rs") == []


class TestFindFiles:

    def test_entries(self, project):
        fm = FileManager(str(project))
        entries = {e.path: e for e in fm.find_files("**/*")}
        assert entries["a.ts"].type == "ts"
        assert entries["a.ts"].size == 10
        assert entries["src/b.js"].size == 20
        assert entries["README"].type == "unknown"


# ---------------------------------------------------------------------------
# Directory aggregate
# ---------------------------------------------------------------------------

class TestAnalyzeDirectory:

    def test_counts_and_sizes(self, project):
        stats = FileManager(str(project)).analyze_directory()
        assert stats.files == 3
        assert stats.directories == 1
        assert stats.total_size == 60
        assert stats.type_breakdown == {"ts": 1, "js": 1, NO_EXTENSION: 1}
        assert sum(stats.type_breakdown.values()) == 3

    def test_extension_is_lowercased(self, tmp_path):
        (tmp_path / "A.PY").write_text("1")
        (tmp_path / "b.py").write_text("2")
        stats = FileManager(str(tmp_path)).analyze_directory()
        assert stats.type_breakdown == {"py": 2}

    def test_empty_directory(self, tmp_path):
        stats = FileManager(str(tmp_path)).analyze_directory()
        assert stats.files == 0
        assert stats.directories == 0
        assert stats.total_size == 0
        assert stats.type_breakdown == {}

    def test_result_independent_of_worker_count(self, project):
        single = FileManager(str(project), max_workers=1).analyze_directory()
        many = FileManager(str(project), max_workers=16).analyze_directory()
        assert single == many

    def test_progress_callback(self, project):
        calls = []
        FileManager(str(project)).analyze_directory(
            progress_callback=lambda cur, total, path: calls.append((cur, total, path)),
        )
        assert len(calls) == 4
        assert [c[0] for c in calls] == [1, 2, 3, 4]
        assert all(c[1] == 4 for c in calls)
        assert {c[2] for c in calls} == {"a.ts", "src", "src/b.js", "README"}

    def test_unreadable_entry_aborts_scan(self, project, monkeypatch):
        original = FileManager._stat_entry

        def _failing_stat(self, rel_path):
            if rel_path == "src/b.js":
                raise PermissionError(13, "Permission denied", rel_path)
            return original(self, rel_path)

        monkeypatch.setattr(FileManager, "_stat_entry", _failing_stat)
        with pytest.raises(PermissionError):
            FileManager(str(project)).analyze_directory()

    def test_nested_directories(self, tmp_path):
        nested = tmp_path / "a" / "b" / "c"
        nested.mkdir(parents=True)
        (nested / "deep.txt").write_text("abc")
        stats = FileManager(str(tmp_path)).analyze_directory()
        assert stats.directories == 3
        assert stats.files == 1
        assert stats.total_size == os.path.getsize(nested / "deep.txt")


class TestNestedIgnorePaths:

    @pytest.fixture
    def tree(self, tmp_path):
        (tmp_path / "a.py").write_text("x = 1\n")
        (tmp_path / "var" / "abacus").mkdir(parents=True)
        (tmp_path / "var" / "abacus" / "memory.db").write_bytes(b"\x00" * 16)
        (tmp_path / "var" / "keep.txt").write_text("keep")
        (tmp_path / "var" / "abacus2.txt").write_text("also kept")
        return tmp_path

    @pytest.mark.parametrize("entry", ["var/abacus", "./var/abacus/", "var//abacus"])
    def test_multi_component_entry_excluded(self, tree, entry):
        fm = FileManager(str(tree), ignore_dirs=[entry])
        assert set(fm.list_files("**/*")) == {
            "a.py", "var", "var/keep.txt", "var/abacus2.txt",
        }

    def test_directory_scan_skips_nested_state_dir(self, tree):
        stats = FileManager(str(tree), ignore_dirs=["var/abacus"]).analyze_directory()
        assert stats.files == 3
        assert stats.directories == 1
        assert "db" not in stats.type_breakdown

    def test_prefix_is_anchored_at_root(self, tree):
        (tree / "src" / "var" / "abacus").mkdir(parents=True)
        (tree / "src" / "var" / "abacus" / "x.py").write_text("")
        fm = FileManager(str(tree), ignore_dirs=["var/abacus"])
        assert "src/var/abacus/x.py" in fm.list_files("**/*.py")
