"""Slash-command routing and handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .agent import Agent
from .config import CONFIG_FIELDS, Config
from .errors import TransportError
from .personality import DEFAULT_PERSONALITIES, generate_personality_prompt, save_personality
from .rendering import ACCENT, BORDER, DIM, ERROR, SUCCESS, TEXT, WARN
from .session import SessionManager
from .ui import HELP_TEXT, SLASH_COMMANDS

_SLASH_ALIASES = {"/h": "/help", "/?": "/help", "/exit": "/quit", "/q": "/quit", "/pwd": "/cwd"}


@dataclass
class CommandContext:
    console: Console
    agent: Agent
    config: Config
    sessions: Optional[SessionManager] = None


CommandHandler = Callable[[CommandContext, list[str]], str]


def _resolve_command(raw_cmd: str) -> str:
    """Exact name, then alias, then the first command with that prefix."""
    cmd = raw_cmd.lower()
    if cmd in SLASH_COMMANDS:
        return cmd
    if cmd in _SLASH_ALIASES:
        return _SLASH_ALIASES[cmd]
    matches = [candidate for candidate in SLASH_COMMANDS if candidate.startswith(cmd)]
    if len(matches) == 1:
        return matches[0]
    return cmd


def handle_command(command: str, *, console: Console, agent: Agent, config: Config,
                   sessions: Optional[SessionManager] = None) -> str:
    """Run one slash command. Returns ``"quit"`` when the REPL should exit."""
    parts = command.split()
    if not parts:
        return ""

    cmd = _resolve_command(parts[0])
    handler = COMMAND_HANDLERS.get(cmd)
    if not handler:
        console.print(f"  [{WARN}]Unknown: {cmd}. Try /help[/{WARN}]")
        return ""
    ctx = CommandContext(console=console, agent=agent, config=config, sessions=sessions)
    return handler(ctx, parts[1:])


def show_config_panel(console: Console, config: Config) -> None:
    table = Table(show_header=False, border_style=BORDER, padding=(0, 2), box=None)
    table.add_column("Key", style=f"bold {ACCENT}", min_width=14)
    table.add_column("Value", style=TEXT)
    for key, value in config.summary().items():
        table.add_row(key, str(value))
    console.print(Panel(table, title=f"[bold {ACCENT}] Configuration [/bold {ACCENT}]",
                        title_align="left", border_style=BORDER, padding=(0, 1)))


def apply_config_to_agent(agent: Agent, config: Config) -> None:
    agent.max_tool_rounds = config.max_tool_rounds
    agent.max_stream_tool_rounds = config.max_stream_tool_rounds
    agent.set_simple_mode(config.simple_mode)
    agent.set_argument_mode(config.stream_tool_arguments)
    agent.tools.shell.timeout = config.command_timeout
    if agent.confirmation is not None:
        agent.confirmation.auto_confirm = config.auto_confirm
        agent.confirmation.flags.all_operations = config.auto_confirm


# ── handlers ──

def _cmd_quit(ctx: CommandContext, args: list[str]) -> str:
    ctx.console.print(f"[{DIM}]Goodbye![/{DIM}]")
    return "quit"


def _cmd_help(ctx: CommandContext, args: list[str]) -> str:
    ctx.console.print(HELP_TEXT)
    return ""


def _show_model_table(ctx: CommandContext) -> None:
    table = Table(border_style=BORDER)
    table.add_column("", width=2)
    table.add_column("Name", style=f"bold {ACCENT}")
    table.add_column("Model", style=TEXT)
    table.add_column("Key", style=DIM)
    table.add_column("Context", justify="right", style=DIM)
    table.add_column("Description", style=DIM)
    for model in ctx.config.list_models():
        marker = f"[{SUCCESS}]●[/{SUCCESS}]" if model["active"] else " "
        table.add_row(marker, model["name"], model["model"],
                      "✓" if model["key"] else "✗", f"{model['context'] // 1024}K", model["desc"])
    ctx.console.print(Panel(table, title=f"[bold {ACCENT}] Models [/bold {ACCENT}]",
                            title_align="left", border_style=BORDER))


def _cmd_model(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        ctx.console.print(f"  Current model: [bold]{ctx.agent.get_current_model()}[/bold]"
                          f" [{DIM}](preset {ctx.config.active_model})[/{DIM}]")
        return ""

    name = args[0]
    if name in ctx.config.models:
        ctx.config.set_active_model(name)
        model = ctx.config.models[name].model
    elif "/" in name:
        model = name
    else:
        ctx.console.print(f"  [{WARN}]Unknown model: '{name}'. Use /models to list presets.[/{WARN}]")
        return ""

    ctx.agent.set_model(model)
    ctx.console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Switched → [bold]{name}[/bold] [{DIM}]({model})[/{DIM}]")
    return ""


def _cmd_models(ctx: CommandContext, args: list[str]) -> str:
    if args and args[0] == "remote":
        try:
            names = ctx.agent.client.fetch_models()
        except TransportError as e:
            ctx.console.print(f"  [{ERROR}]{e}[/{ERROR}]")
            return ""
        for name in names:
            ctx.console.print(f"  {name}")
        return ""
    _show_model_table(ctx)
    return ""


def _cmd_simple(ctx: CommandContext, args: list[str]) -> str:
    enabled = not ctx.agent.simple_mode
    ctx.agent.set_simple_mode(enabled)
    ctx.config.simple_mode = enabled
    state = "ON (tools disabled)" if enabled else "OFF (tools enabled)"
    ctx.console.print(f"  [{SUCCESS}]✓ Simple mode {state}[/{SUCCESS}]")
    return ""


def _cmd_clear(ctx: CommandContext, args: list[str]) -> str:
    ctx.agent.clear()
    if ctx.agent.confirmation is not None:
        ctx.agent.confirmation.reset_session()
    if ctx.sessions is not None:
        session = ctx.sessions.create_session(ctx.agent.get_current_directory())
        ctx.console.print(f"  [{SUCCESS}]✓ Conversation cleared[/{SUCCESS}] [{DIM}]new session {session.id}[/{DIM}]")
    else:
        ctx.console.print(f"  [{SUCCESS}]✓ Conversation cleared[/{SUCCESS}]")
    return ""


def _cmd_sessions(ctx: CommandContext, args: list[str]) -> str:
    if ctx.sessions is None:
        ctx.console.print(f"  [{WARN}]Sessions are disabled[/{WARN}]")
        return ""
    sessions = ctx.sessions.list_sessions()
    if not sessions:
        ctx.console.print(f"  [{DIM}]No saved sessions[/{DIM}]")
        return ""

    current = ctx.sessions.current.id if ctx.sessions.current else None
    table = Table(border_style=BORDER)
    table.add_column("", width=2)
    table.add_column("ID", style=f"bold {ACCENT}")
    table.add_column("Title", style=TEXT)
    table.add_column("Msgs", justify="right", style=DIM)
    table.add_column("Updated", style=DIM)
    table.add_column("Directory", style=DIM)
    for meta in sessions[:20]:
        marker = f"[{SUCCESS}]●[/{SUCCESS}]" if meta.id == current else " "
        table.add_row(marker, meta.id[:8], meta.title, str(meta.message_count),
                      meta.updated_at.replace("T", " "), meta.working_directory)
    ctx.console.print(Panel(table, title=f"[bold {ACCENT}] Sessions [/bold {ACCENT}]",
                            title_align="left", border_style=BORDER))
    ctx.console.print(f"  [{DIM}]/resume <id> to continue a session[/{DIM}]")
    return ""


def _cmd_resume(ctx: CommandContext, args: list[str]) -> str:
    if ctx.sessions is None:
        ctx.console.print(f"  [{WARN}]Sessions are disabled[/{WARN}]")
        return ""
    if not args:
        ctx.console.print("  Usage: /resume <id>")
        return ""

    prefix = args[0]
    matches = [m.id for m in ctx.sessions.list_sessions() if m.id.startswith(prefix)]
    if len(matches) != 1:
        reason = "No session matches" if not matches else "Ambiguous session id"
        ctx.console.print(f"  [{WARN}]{reason}: {prefix}[/{WARN}]")
        return ""

    session = ctx.sessions.load_session(matches[0])
    if session is None:
        ctx.console.print(f"  [{ERROR}]Could not load session {matches[0]}[/{ERROR}]")
        return ""
    ctx.agent.load_session(session)
    ctx.console.print(f"  [{SUCCESS}]✓ Resumed {session.id[:8]}[/{SUCCESS}] "
                      f"[{DIM}]({len(session.messages)} messages)[/{DIM}]")
    return ""


def _cmd_title(ctx: CommandContext, args: list[str]) -> str:
    if ctx.sessions is None or ctx.sessions.current is None:
        ctx.console.print(f"  [{WARN}]No active session[/{WARN}]")
        return ""
    if not args:
        ctx.console.print("  Usage: /title <text>")
        return ""
    title = " ".join(args)
    ctx.sessions.set_session_title(ctx.sessions.current.id, title)
    ctx.console.print(f"  [{SUCCESS}]✓ Session titled[/{SUCCESS}] {title}")
    return ""


def _cmd_personality(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        current = ctx.agent.personality
        if current:
            ctx.console.print(f"  [bold {ACCENT}]Current:[/bold {ACCENT}] {generate_personality_prompt(current)}")
        else:
            ctx.console.print(f"  [{DIM}]No personality configured[/{DIM}]")
        ctx.console.print(f"  Presets: {', '.join(DEFAULT_PERSONALITIES)}")
        ctx.console.print(f"  [{DIM}]/personality <preset> writes .groq/assistant.json[/{DIM}]")
        return ""

    name = args[0]
    if name not in DEFAULT_PERSONALITIES:
        ctx.console.print(f"  [{WARN}]Unknown personality: {name}[/{WARN}]")
        return ""
    path = save_personality(DEFAULT_PERSONALITIES[name], ctx.agent.get_current_directory())
    ctx.agent.reload_instructions()
    ctx.console.print(f"  [{SUCCESS}]✓ Personality set to {name}[/{SUCCESS}] [{DIM}]({path})[/{DIM}]")
    return ""


def _cmd_config(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        show_config_panel(ctx.console, ctx.config)
        return ""

    key = args[0]
    if key not in CONFIG_FIELDS:
        ctx.console.print(f"  [{ERROR}]Unknown configuration key: {key}[/{ERROR}]")
        ctx.console.print(f"  [{DIM}]Keys: {', '.join(CONFIG_FIELDS)}[/{DIM}]")
        return ""

    spec = CONFIG_FIELDS[key]
    if len(args) == 1:
        value = ctx.config.get_config_value(key)
        shown = ", ".join(value) if isinstance(value, list) else str(value)
        ctx.console.print(f"  [bold {ACCENT}]{key}[/bold {ACCENT}] = [bold]{shown}[/bold]")
        ctx.console.print(f"  [{DIM}]{spec.description} (default: {spec.default})[/{DIM}]")
        return ""

    raw = " ".join(args[1:])
    if raw == "default":
        success, error_msg = ctx.config.reset_config_value(key)
    else:
        success, error_msg = ctx.config.set_config_value(key, raw)
    if not success:
        ctx.console.print(f"  [{ERROR}]{error_msg}[/{ERROR}]")
        return ""

    if key == "active-model":
        ctx.agent.set_model(ctx.config.get_active_preset().model)
    apply_config_to_agent(ctx.agent, ctx.config)
    value = ctx.config.get_config_value(key)
    shown = ", ".join(value) if isinstance(value, list) else str(value)
    ctx.console.print(f"  [{SUCCESS}]✓ Set {key} → {shown}[/{SUCCESS}]")
    return ""


def _cmd_cwd(ctx: CommandContext, args: list[str]) -> str:
    ctx.console.print(f"  {ctx.agent.get_current_directory()}")
    return ""


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/help": _cmd_help,
    "/model": _cmd_model,
    "/models": _cmd_models,
    "/simple": _cmd_simple,
    "/clear": _cmd_clear,
    "/sessions": _cmd_sessions,
    "/resume": _cmd_resume,
    "/title": _cmd_title,
    "/personality": _cmd_personality,
    "/config": _cmd_config,
    "/cwd": _cmd_cwd,
    "/quit": _cmd_quit,
}
