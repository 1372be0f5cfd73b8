"""Tests for view_file, create_file and str_replace_editor."""

from unittest.mock import patch

import pytest

from groq_agent.confirmation import ConfirmationReply, ConfirmationService
from groq_agent.diff_utils import count_diff_lines, generate_unified_diff
from groq_agent.errors import ConfirmationRejected
from groq_agent.tools.file_ops import FileOperationError, FileOps


@pytest.fixture
def ops(tmp_path):
    return FileOps(lambda: str(tmp_path))


class TestView:

    def test_numbered_lines(self, ops, tmp_path):
        (tmp_path / "a.py").write_text("one\ntwo\nthree\n", encoding="utf-8")

        result = ops.view("a.py")

        assert result.splitlines()[0] == "Contents of a.py (3 lines):"
        assert "   1 | one" in result
        assert "   3 | three" in result

    def test_line_range_is_inclusive(self, ops, tmp_path):
        (tmp_path / "a.py").write_text("\n".join(f"line{i}" for i in range(1, 11)), encoding="utf-8")

        result = ops.view("a.py", start_line=3, end_line=5)

        assert "lines 3-5" in result.splitlines()[0]
        body = result.splitlines()[1:]
        assert body == ["   3 | line3", "   4 | line4", "   5 | line5"]

    def test_start_past_end_fails(self, ops, tmp_path):
        (tmp_path / "a.py").write_text("x\n", encoding="utf-8")
        with pytest.raises(FileOperationError, match="exceeds file length"):
            ops.view("a.py", start_line=10)

    def test_missing_path(self, ops):
        with pytest.raises(FileOperationError) as exc:
            ops.view("ghost.txt")
        assert exc.value.message == "File or directory not found: ghost.txt"

    def test_directory_listing(self, ops, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / ".git").mkdir()
        (tmp_path / "README.md").write_text("hi", encoding="utf-8")

        result = ops.view(".")

        assert result.startswith("Directory contents of .:")
        assert "  src/" in result
        assert "  README.md (2B)" in result
        assert ".git" not in result

    def test_empty_directory(self, ops, tmp_path):
        (tmp_path / "empty").mkdir()
        assert ops.view("empty").endswith("(empty)")

    def test_binary_file(self, ops, tmp_path):
        (tmp_path / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")
        with pytest.raises(FileOperationError, match="Cannot view binary file"):
            ops.view("blob.bin")

    def test_paths_follow_provider(self, tmp_path):
        sub = tmp_path / "sub"
        sub.mkdir()
        (sub / "note.txt").write_text("inside", encoding="utf-8")
        current = {"dir": str(tmp_path)}
        ops = FileOps(lambda: current["dir"])

        current["dir"] = str(sub)

        assert "inside" in ops.view("note.txt")


class TestCreate:

    def test_create_with_parents(self, ops, tmp_path):
        result = ops.create_file("pkg/mod.py", "a = 1\nb = 2\n")

        assert result == "Created pkg/mod.py (2 lines)"
        assert (tmp_path / "pkg" / "mod.py").read_text(encoding="utf-8") == "a = 1\nb = 2\n"

    def test_existing_file_is_refused(self, ops, tmp_path):
        (tmp_path / "a.txt").write_text("keep", encoding="utf-8")

        with pytest.raises(FileOperationError, match="File already exists: a.txt"):
            ops.create_file("a.txt", "overwrite")
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "keep"

    def test_rejected_confirmation_writes_nothing(self, tmp_path):
        service = ConfirmationService()
        ops = FileOps(lambda: str(tmp_path), service)

        with patch.object(service, "request", return_value=ConfirmationReply(confirmed=False)):
            with pytest.raises(ConfirmationRejected) as exc:
                ops.create_file("new.txt", "x")

        assert exc.value.message == "File operation cancelled by user"
        assert not (tmp_path / "new.txt").exists()


class TestStrReplace:

    def test_unique_replacement(self, ops, tmp_path):
        target = tmp_path / "app.py"
        target.write_text("def f():\n    return 1\n", encoding="utf-8")

        result = ops.str_replace("app.py", "return 1", "return 2")

        assert result.startswith("Updated app.py with 1 additions and 1 removals")
        assert "-    return 1" in result
        assert "+    return 2" in result
        assert target.read_text(encoding="utf-8") == "def f():\n    return 2\n"

    def test_missing_file(self, ops):
        with pytest.raises(FileOperationError, match="File not found: nope.py"):
            ops.str_replace("nope.py", "a", "b")

    def test_no_match(self, ops, tmp_path):
        (tmp_path / "a.txt").write_text("hello", encoding="utf-8")
        with pytest.raises(FileOperationError, match="String not found"):
            ops.str_replace("a.txt", "bye", "hi")

    def test_multiple_matches_are_refused(self, ops, tmp_path):
        (tmp_path / "a.txt").write_text("x\nx\n", encoding="utf-8")
        with pytest.raises(FileOperationError, match="appears 2 times"):
            ops.str_replace("a.txt", "x", "y")
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "x\nx\n"

    def test_confirmation_preview_is_a_diff(self, tmp_path):
        (tmp_path / "a.txt").write_text("old\n", encoding="utf-8")
        service = ConfirmationService()
        ops = FileOps(lambda: str(tmp_path), service)

        with patch.object(service, "request", return_value=ConfirmationReply(confirmed=True)) as req:
            ops.str_replace("a.txt", "old", "new")

        operation, target, kind = req.call_args.args[:3]
        assert (operation, target, kind) == ("Edit file", "a.txt", "file")
        assert req.call_args.kwargs["preview"].startswith("--- a/a.txt")


class TestDiffUtils:

    def test_counts(self):
        diff = generate_unified_diff("a\nb\nc", "a\nB\nc\nd", "f.txt")
        assert diff.startswith("--- a/f.txt\n+++ b/f.txt")
        assert count_diff_lines(diff) == (2, 1)

    def test_identical_content_has_no_diff(self):
        assert generate_unified_diff("same\n", "same\n") == ""
