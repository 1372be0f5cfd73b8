"""File tools: view_file, create_file, str_replace_editor."""

from pathlib import Path
from typing import Callable, Optional

from ..confirmation import FILE_OPERATION, ConfirmationService
from ..diff_utils import count_diff_lines, generate_unified_diff, preview_str_replace
from ..errors import ConfirmationRejected, ToolError

MAX_VIEW_LINES = 2000


class FileOperationError(ToolError):

    def __init__(self, message: str, tool_name: str = "view_file"):
        super().__init__(tool_name, message)


class FileOps:
    SKIP_DIRS = {".git", ".venv", "venv", "node_modules", "__pycache__", ".mypy_cache", ".pytest_cache"}

    def __init__(self, cwd_provider: Callable[[], str],
                 confirmation: Optional[ConfirmationService] = None):
        # The bash tool owns the working directory; relative paths follow its `cd`.
        self._cwd = cwd_provider
        self.confirmation = confirmation

    def _resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = Path(self._cwd()) / p
        return p.resolve()

    def _confirm(self, tool_name: str, operation: str, path: str, preview: str):
        if self.confirmation is None:
            return
        reply = self.confirmation.request(operation, path, FILE_OPERATION, preview=preview)
        if not reply.confirmed:
            if reply.feedback:
                raise FileOperationError(reply.feedback, tool_name)
            raise ConfirmationRejected(tool_name, "File operation")

    # ── view ──

    def view(self, path: str, start_line: Optional[int] = None,
             end_line: Optional[int] = None) -> str:
        fp = self._resolve(path)
        if not fp.exists():
            raise FileOperationError(f"File or directory not found: {path}")
        if fp.is_dir():
            return self._list_directory(fp, path)

        try:
            content = fp.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            raise FileOperationError(f"Cannot view binary file: {path}")
        except OSError as e:
            raise FileOperationError(f"Cannot read {path}: {e}")

        lines = content.splitlines()
        total = len(lines)
        start = max(int(start_line or 1), 1)
        end = min(int(end_line or total), total)
        if start_line is not None and start > total:
            raise FileOperationError(f"start_line {start} exceeds file length ({total} lines): {path}")
        display = lines[start - 1:end]

        note = ""
        if start_line is None and end_line is None and total > MAX_VIEW_LINES:
            display = display[:MAX_VIEW_LINES]
            note = f"\n... ({total - MAX_VIEW_LINES} more lines, pass start_line/end_line)"

        numbered = [f"{start + i:4d} | {line}" for i, line in enumerate(display)]
        header = f"Contents of {path} ({total} lines)"
        if start_line is not None or end_line is not None:
            header += f", lines {start}-{end}"
        return header + ":\n" + "\n".join(numbered) + note

    def _list_directory(self, fp: Path, path: str) -> str:
        try:
            entries = sorted(fp.iterdir(), key=lambda e: (not e.is_dir(), e.name.lower()))
        except PermissionError:
            raise FileOperationError(f"Permission denied: {path}")
        lines = [f"Directory contents of {path}:"]
        for entry in entries:
            if entry.name in self.SKIP_DIRS:
                continue
            if entry.is_dir():
                lines.append(f"  {entry.name}/")
            else:
                lines.append(f"  {entry.name} ({self._fmtsize(entry.stat().st_size)})")
        if len(lines) == 1:
            lines.append("  (empty)")
        return "\n".join(lines)

    @staticmethod
    def _fmtsize(n: float) -> str:
        for unit in ("B", "KB", "MB", "GB"):
            if n < 1024:
                return f"{n:.0f}{unit}" if unit == "B" else f"{n:.1f}{unit}"
            n /= 1024
        return f"{n:.1f}TB"

    # ── create ──

    def create_file(self, path: str, content: str) -> str:
        fp = self._resolve(path)
        if fp.exists():
            raise FileOperationError(
                f"File already exists: {path}. Use str_replace_editor to modify it.", "create_file"
            )
        preview = content if len(content) <= 2000 else content[:2000] + "\n..."
        self._confirm("create_file", "Create file", path, preview)

        try:
            fp.parent.mkdir(parents=True, exist_ok=True)
            fp.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FileOperationError(f"Failed to create {path}: {e}", "create_file")
        return f"Created {path} ({len(content.splitlines())} lines)"

    # ── edit ──

    def str_replace(self, path: str, old_str: str, new_str: str) -> str:
        fp = self._resolve(path)
        if not fp.is_file():
            raise FileOperationError(f"File not found: {path}", "str_replace_editor")
        try:
            content = fp.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileOperationError(f"Cannot read {path}: {e}", "str_replace_editor")

        count = content.count(old_str) if old_str else 0
        if count == 0:
            raise FileOperationError(
                f"String not found in {path}. View the file and copy the exact text.",
                "str_replace_editor",
            )
        if count > 1:
            raise FileOperationError(
                f"String appears {count} times in {path}. Include more context to make it unique.",
                "str_replace_editor",
            )

        self._confirm("str_replace_editor", "Edit file", path,
                      preview_str_replace(content, old_str, new_str, path))

        new_content = content.replace(old_str, new_str, 1)
        try:
            fp.write_text(new_content, encoding="utf-8")
        except OSError as e:
            raise FileOperationError(f"Failed to write {path}: {e}", "str_replace_editor")

        diff = generate_unified_diff(content, new_content, path)
        added, removed = count_diff_lines(diff)
        return f"Updated {path} with {added} additions and {removed} removals\n{diff}".rstrip()
