"""Terminal rendering of chat entries, stream chunks and confirmation prompts."""

import json
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from .confirmation import BASH_COMMAND, ConfirmationRequest
from .messages import ChatEntry, StreamingChunk, ToolCall, ToolResult

ACCENT = "#F55036"
TEXT = "#E6EDF3"
DIM = "#8B949E"
MUTED = "#6E7681"
SUCCESS = "#57DB9C"
WARN = "#E3B341"
ERROR = "#F85149"
BORDER = "#30363D"

MAX_RESULT_LINES = 20

_TOOL_ICONS = {
    "view_file": "▸", "create_file": "◆", "str_replace_editor": "✎", "bash": "$",
    "create_todo_list": "☐", "update_todo_list": "☑", "web_fetch": "◎", "web_search": "⊙",
}

__all__ = [
    "render_error", "render_assistant_message", "render_tool_call", "render_tool_result",
    "render_entry", "build_diff_text", "ask_confirmation", "StreamPrinter",
]


def _arguments(call: ToolCall) -> dict:
    try:
        args = json.loads(call.arguments or "{}")
    except ValueError:
        return {}
    return args if isinstance(args, dict) else {}


def _call_detail(call: ToolCall) -> str:
    args = _arguments(call)
    name = call.name
    if name == "bash":
        return args.get("command", "")
    if name == "view_file":
        detail = args.get("path", "")
        if args.get("start_line"):
            detail += f" L{args['start_line']}-{args.get('end_line', '∞')}"
        return detail
    if name == "create_file":
        n = str(args.get("content", "")).count("\n") + 1
        return f"{args.get('path', '')} ({n} lines)"
    if name == "str_replace_editor":
        return args.get("path", "")
    if name == "web_fetch":
        return args.get("url", "")
    if name == "web_search":
        return args.get("query", "")
    if name in ("create_todo_list", "update_todo_list"):
        items = args.get("todos") or args.get("updates") or []
        return f"{len(items)} item(s)" if isinstance(items, list) else ""
    return ""


def render_error(console: Console, message: str):
    console.print()
    console.print(Panel(
        f"[{ERROR}]{message}[/{ERROR}]",
        title=f"[bold {ERROR}]Error[/bold {ERROR}]",
        title_align="left",
        border_style=ERROR,
        padding=(0, 2),
    ))


def render_assistant_message(console: Console, content: str):
    console.print()
    if content.strip():
        console.print(Markdown(content))


def render_tool_call(console: Console, call: ToolCall, index: Optional[int] = None,
                     total: Optional[int] = None):
    icon = _TOOL_ICONS.get(call.name, "·")
    progress = f"[{DIM}]{index}/{total}[/{DIM}] " if total and total > 1 else ""
    detail = Text(_call_detail(call), style=DIM)
    line = Text.from_markup(f"\n  {progress}[{ACCENT}]{icon}[/{ACCENT}] [bold {TEXT}]{call.name}[/bold {TEXT}] ")
    line.append_text(detail)
    console.print(line)


def render_tool_result(console: Console, call: Optional[ToolCall], result: ToolResult):
    text = result.display_content()
    lines = text.splitlines() or [""]
    if not result.success:
        preview = "\n".join(lines[:5]) + (f"\n... ({len(lines) - 5} more)" if len(lines) > 5 else "")
        console.print(Text(f"     ✕ {preview}", style=ERROR))
        return

    if call is not None and call.name == "str_replace_editor" and len(lines) > 1:
        console.print(Text(f"     ✓ {lines[0]}", style=SUCCESS))
        console.print(build_diff_text("\n".join(lines[1:])))
        return
    if len(lines) == 1 or (call is not None and call.name in ("create_file", "bash") and len(lines) <= 2):
        console.print(Text(f"     ✓ {lines[0]}", style=SUCCESS))
        for extra in lines[1:]:
            console.print(Text(f"       {extra}", style=DIM))
        return

    shown = lines[:MAX_RESULT_LINES]
    body = Text("\n".join(f"     {line}" for line in shown), style=DIM)
    console.print(body)
    if len(lines) > MAX_RESULT_LINES:
        console.print(Text(f"     ... ({len(lines) - MAX_RESULT_LINES} more lines)", style=MUTED))


def render_entry(console: Console, entry: ChatEntry):
    """Render one entry from ``process_user_message`` (the user's own entry is skipped)."""
    if entry.type == "assistant":
        if entry.tool_calls:
            if entry.content:
                console.print(Text(f"\n{entry.content}", style=DIM))
            return
        render_assistant_message(console, entry.content)
    elif entry.type == "tool_result":
        if entry.tool_call is not None:
            render_tool_call(console, entry.tool_call)
        render_tool_result(console, entry.tool_call, entry.tool_result or ToolResult.ok(entry.content))


def build_diff_text(diff: str) -> Text:
    out = Text()
    for line in diff.splitlines():
        if line.startswith(("+++", "---")):
            out.append(f"     {line}\n", style=f"bold {DIM}")
        elif line.startswith("@@"):
            out.append(f"     {line}\n", style=ACCENT)
        elif line.startswith("+"):
            out.append(f"     {line}\n", style=SUCCESS)
        elif line.startswith("-"):
            out.append(f"     {line}\n", style=ERROR)
        else:
            out.append(f"     {line}\n", style=MUTED)
    out.rstrip()
    return out


def ask_confirmation(console: Console, request: ConfirmationRequest) -> None:
    """Show a pending request, read y/n/a from the terminal, and answer it."""
    console.print()
    console.print(Text.from_markup(f"  [{WARN}]?[/{WARN}] [bold {TEXT}]{request.operation}[/bold {TEXT}] ")
                  + Text(request.target, style=DIM))
    if request.preview and request.preview != request.target:
        if request.preview.startswith("---"):
            body = build_diff_text(request.preview)
        else:
            body = Text(request.preview, style=DIM)
        console.print(Panel(body, border_style=BORDER, padding=(0, 1)))

    scope = "bash commands" if request.kind == BASH_COMMAND else "file operations"
    try:
        ans = console.input(
            f"  [bold {TEXT}](y)[/bold {TEXT}][{MUTED}]es[/{MUTED}] / "
            f"[bold {TEXT}](n)[/bold {TEXT}][{MUTED}]o[/{MUTED}] / "
            f"[bold {TEXT}](a)[/bold {TEXT}][{MUTED}]ll {scope} this session[/{MUTED}]: "
        ).strip().lower()
    except (KeyboardInterrupt, EOFError):
        ans = "n"

    if ans in ("a", "all", "always"):
        request.answer(True, remember=True)
    elif ans in ("y", "yes", ""):
        request.answer(True)
    else:
        request.answer(False)


class StreamPrinter:
    """Incremental renderer for ``StreamingChunk`` values."""

    def __init__(self, console: Console):
        self.console = console
        self.token_count = 0
        self._in_text = False

    def _end_text(self):
        if self._in_text:
            self.console.print()
            self._in_text = False

    def feed(self, chunk: StreamingChunk) -> None:
        if chunk.type == "content" and chunk.content:
            if not self._in_text:
                self.console.print()
                self._in_text = True
            self.console.print(chunk.content, end="", markup=False, highlight=False, soft_wrap=True)
        elif chunk.type == "tool_calls":
            self._end_text()
            names = ", ".join(tc.name for tc in chunk.tool_calls or [] if tc.name)
            self.console.print(Text(f"\n  ⋯ using {names}", style=MUTED))
        elif chunk.type == "tool_result":
            self._end_text()
            if chunk.tool_call is not None:
                render_tool_call(self.console, chunk.tool_call)
            if chunk.tool_result is not None:
                render_tool_result(self.console, chunk.tool_call, chunk.tool_result)
        elif chunk.type == "token_count" and chunk.token_count is not None:
            self.token_count = chunk.token_count
        elif chunk.type == "done":
            self._end_text()
            if self.token_count:
                self.console.print(Text(f"  ~{self.token_count:,} tokens", style=MUTED))
