"""Prompt styling, slash-command table and completer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.styles import Style

THEME_ACCENT = "#F55036"
THEME_PROMPT = "#E8C1B8"

PTK_STYLE = Style.from_dict({
    "completion-menu": "bg:default",
    "completion-menu.completion": "bg:default #E6D6D2",
    "completion-menu.completion.current": "bg:#3A2420 #FFF1EC",
    "completion-menu.command": "#F58A73",
    "completion-menu.args": "#B3A29E",
    "completion-menu.description": "#8C9BAB",
})


@dataclass(frozen=True)
class SlashCommandSpec:
    command: str
    usage: str
    description: str
    keywords: tuple[str, ...] = ()


SLASH_COMMAND_SPECS: tuple[SlashCommandSpec, ...] = (
    SlashCommandSpec("/help", "/help", "Show help", ("usage", "commands")),
    SlashCommandSpec("/model", "/model [name]", "Show or switch model", ("llm", "preset")),
    SlashCommandSpec("/models", "/models", "List models", ("llm", "available", "groq")),
    SlashCommandSpec("/simple", "/simple", "Toggle simple mode (no tools)", ("tools", "chat")),
    SlashCommandSpec("/clear", "/clear", "Clear conversation", ("reset", "history")),
    SlashCommandSpec("/sessions", "/sessions", "List saved sessions", ("history",)),
    SlashCommandSpec("/resume", "/resume <id>", "Resume a session", ("load", "session")),
    SlashCommandSpec("/title", "/title <text>", "Name the current session", ("rename", "session")),
    SlashCommandSpec("/personality", "/personality [name]", "Show or set personality", ("persona", "assistant")),
    SlashCommandSpec("/config", "/config [key [value]]", "Show or change settings", ("settings",)),
    SlashCommandSpec("/cwd", "/cwd", "Show working directory", ("pwd", "directory")),
    SlashCommandSpec("/quit", "/quit", "Quit", ("exit",)),
)

SLASH_COMMANDS = [spec.command for spec in SLASH_COMMAND_SPECS]
MAX_SLASH_MENU_ITEMS = 12


def build_banner(version: str) -> str:
    return (
        f"[bold {THEME_ACCENT}]groq-agent[/bold {THEME_ACCENT}] "
        f"[dim]v{version} · Groq-powered coding assistant[/dim]"
    )


def build_help_text() -> str:
    usage_width = max(len(spec.usage) for spec in SLASH_COMMAND_SPECS)
    lines = ["", f"[bold {THEME_ACCENT}]Commands:[/bold {THEME_ACCENT}]"]
    for spec in SLASH_COMMAND_SPECS:
        lines.append(f"  {spec.usage:<{usage_width}}  {spec.description}")
    lines.extend([
        "",
        f"[bold {THEME_ACCENT}]Tips:[/bold {THEME_ACCENT}]",
        "  Esc → Enter   Multi-line input",
        "  Ctrl-C        Cancel the running turn",
        "  Ctrl-D ×2     Exit",
    ])
    return "\n".join(lines)


HELP_TEXT = build_help_text()


def make_prompt_html() -> HTML:
    return HTML(
        f'<style fg="{THEME_PROMPT}">groq</style>'
        f'<style fg="#7A6A66"> › </style>'
    )


def render_startup(console, config, session_id: str | None = None, has_key: bool | None = None) -> None:
    preset = config.get_active_preset()
    if has_key is None:
        has_key = bool(preset.resolve_api_key())
    key_status = "[green]✓[/green]" if has_key else "[red]✗ GROQ_API_KEY not set[/red]"
    stream_text = "[green]stream[/green]" if config.stream else "[dim]no-stream[/dim]"
    simple_text = " [dim]• simple[/dim]" if config.simple_mode else ""

    console.print(
        f"[dim]model[/dim] [bold]{config.active_model}[/bold] [dim]→[/dim] {preset.model}"
        f" [dim]•[/dim] {stream_text}{simple_text}"
        f" [dim]• key[/dim] {key_status}"
    )
    console.print(f"[dim]project[/dim] {config.project_root}")
    if session_id:
        console.print(f"[dim]session[/dim] {session_id}")
    console.print(f"[dim]config[/dim] {config._config_source}")
    console.print("[dim]/help · /model · Ctrl+C to cancel[/dim]")
    console.print()


def _fuzzy_span(query: str, candidate: str) -> int | None:
    """Width of the shortest left-to-right span of ``candidate`` containing ``query``'s chars."""
    if not query:
        return 0
    positions = []
    cursor = 0
    for char in query:
        index = candidate.find(char, cursor)
        if index < 0:
            return None
        positions.append(index)
        cursor = index + 1
    return positions[-1] - positions[0] + 1


def _rank(token: str, spec: SlashCommandSpec, order: int):
    query = token.lower().lstrip("/")
    name = spec.command.lstrip("/")
    if not query or name.startswith(query):
        return (0, 0, order)
    pos = name.find(query)
    if pos >= 0:
        return (1, pos, order)
    span = _fuzzy_span(query, name)
    if span is not None:
        return (2, span, order)
    pos = " ".join((spec.description, *spec.keywords)).lower().find(query)
    if pos >= 0:
        return (3, pos, order)
    return None


class SlashCommandCompleter(Completer):
    """Slash-command menu with prefix, substring, fuzzy and keyword matching."""

    def __init__(self, specs: Sequence[SlashCommandSpec] = SLASH_COMMAND_SPECS,
                 max_items: int = MAX_SLASH_MENU_ITEMS):
        self.specs = list(specs)
        self.max_items = max_items
        self.usage_width = max(len(spec.usage) for spec in self.specs)

    def _display(self, spec: SlashCommandSpec):
        parts = [("class:completion-menu.command", spec.command)]
        if spec.usage != spec.command:
            parts.append(("class:completion-menu.args", spec.usage[len(spec.command):]))
        parts.append(("", " " * max(2, self.usage_width - len(spec.usage) + 1)))
        parts.append(("class:completion-menu.description", spec.description))
        return parts

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor.lstrip()
        if not text.startswith("/") or " " in text:
            return

        ranked = []
        for order, spec in enumerate(self.specs):
            key = _rank(text, spec, order)
            if key is not None:
                ranked.append((key, spec))
        ranked.sort(key=lambda item: item[0])

        for _, spec in ranked[: self.max_items]:
            yield Completion(
                text=spec.command,
                start_position=-len(text),
                display=self._display(spec),
            )
