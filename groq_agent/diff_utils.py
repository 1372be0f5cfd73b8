"""Unified diffs for str_replace_editor results and confirmation previews."""

import difflib
from typing import Tuple


def generate_unified_diff(old_content: str, new_content: str,
                          filename: str = "file", context_lines: int = 3) -> str:
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)

    # difflib glues a final line without newline onto the next header line.
    if old_lines and not old_lines[-1].endswith("\n"):
        old_lines[-1] += "\n"
    if new_lines and not new_lines[-1].endswith("\n"):
        new_lines[-1] += "\n"

    diff = difflib.unified_diff(
        old_lines, new_lines,
        fromfile=f"a/{filename}", tofile=f"b/{filename}",
        n=context_lines,
    )
    return "".join(diff)


def count_diff_lines(diff_text: str) -> Tuple[int, int]:
    """Return ``(added, removed)`` line counts of a unified diff."""
    added = removed = 0
    for line in diff_text.splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def preview_str_replace(content: str, old_str: str, new_str: str, filename: str) -> str:
    return generate_unified_diff(content, content.replace(old_str, new_str, 1), filename)
