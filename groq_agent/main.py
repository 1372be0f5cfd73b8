"""
groq-agent: a Groq-powered coding assistant for your terminal.

Command: groq-agent run
"""

import os
import queue
import sys
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

import click
from rich.console import Console

from . import __version__
from . import config as config_module
from .agent import Agent
from .command_router import handle_command, show_config_panel
from .config import Config
from .confirmation import ConfirmationService
from .llm import GroqClient
from .logger import get_logger, setup_logger
from .personality import load_custom_instructions, load_personality
from .rendering import StreamPrinter, WARN, ask_confirmation, render_entry, render_error
from .session import SessionManager
from .tools import ToolRegistry
from .ui import (
    MAX_SLASH_MENU_ITEMS,
    PTK_STYLE,
    SlashCommandCompleter,
    build_banner,
    make_prompt_html,
    render_startup,
)

_log = get_logger(__name__)

console = Console()

_DONE = object()
_POLL_SECONDS = 0.05


def build_agent(config: Config, sessions: Optional[SessionManager] = None,
                api_key: Optional[str] = None) -> Agent:
    preset = config.get_active_preset()
    client = GroqClient(
        config.model_chain(),
        temperature=preset.temperature,
        max_tokens=preset.max_tokens,
        api_key=api_key or preset.resolve_api_key(),
        api_base=preset.api_base,
    )
    confirmation = ConfirmationService(auto_confirm=config.auto_confirm)
    tools = ToolRegistry(
        cwd=config.project_root,
        blocked_commands=config.blocked_commands,
        command_timeout=config.command_timeout,
        tavily_api_key=config.resolve_tavily_key(),
        confirmation=confirmation,
    )
    return Agent(
        client,
        tools,
        confirmation=confirmation,
        session_manager=sessions,
        max_tool_rounds=config.max_tool_rounds,
        max_stream_tool_rounds=config.max_stream_tool_rounds,
        simple_mode=config.simple_mode,
        argument_mode=config.stream_tool_arguments,
        instructions=load_custom_instructions(config.project_root),
        personality=load_personality(config.project_root),
    )


def _load_config(project_dir: str, model: Optional[str]) -> Config:
    config = Config.load(project_dir)
    if not Path(config.project_root).is_dir():
        console.print(f"[red]Error: '{project_dir}' is not a valid directory.[/red]")
        sys.exit(1)
    if model and model in config.models:
        config.active_model = model
    return config


def prompt_api_key() -> Optional[str]:
    from prompt_toolkit import prompt

    console.print("[bold]No Groq API key found.[/bold] "
                  "[dim]Get one at https://console.groq.com/keys[/dim]")
    try:
        key = prompt("Groq API key: ", is_password=True).strip()
    except (EOFError, KeyboardInterrupt):
        return None
    return key or None


def _first_run_api_key(config: Config) -> Optional[str]:
    """Ask for a Groq key when none is configured and remember the answer."""
    preset = config.get_active_preset()
    key = preset.resolve_api_key()
    if key or preset.provider != "groq":
        return key
    key = prompt_api_key()
    if not key:
        console.print(f"  [{WARN}]No API key set. Requests will fail until GROQ_API_KEY is set.[/{WARN}]")
        return None
    try:
        path = config_module.save_user_api_key(key)
    except OSError as e:
        _log.warning("Could not save API key: %s", e)
        console.print(f"  [{WARN}]Could not save the API key, using it for this session only.[/{WARN}]")
    else:
        console.print(f"  [green]API key saved to {path}[/green]")
    return key


def _apply_model_override(agent: Agent, config: Config, model: Optional[str]) -> None:
    # A value that is not a preset name is taken as a raw litellm model id.
    if model and model not in config.models:
        agent.set_model(model)


def run_turn(agent: Agent, produce: Callable[[], Iterable], consume: Callable,
             out: Console = console) -> None:
    """Run one turn on a worker thread while this thread answers confirmations.

    ``produce`` runs on the worker and yields items; ``consume`` renders each
    item here. Ctrl-C only asks the agent to cancel; the worker finishes on its own.
    """
    items: "queue.Queue" = queue.Queue()

    def worker():
        try:
            for item in produce():
                items.put(item)
        except Exception as e:
            _log.exception("Turn failed")
            items.put(e)
        finally:
            items.put(_DONE)

    thread = threading.Thread(target=worker, name="groq-agent-turn", daemon=True)
    thread.start()

    requests = agent.confirmation.requests if agent.confirmation is not None else None
    while True:
        try:
            if requests is not None:
                try:
                    request = requests.get_nowait()
                except queue.Empty:
                    pass
                else:
                    ask_confirmation(out, request)
                    continue
            try:
                item = items.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _DONE:
                break
            if isinstance(item, Exception):
                render_error(out, f"{type(item).__name__}: {item}")
                continue
            consume(item)
        except KeyboardInterrupt:
            agent.cancel()
            out.print(f"\n[{WARN}]  Cancelling...[/{WARN}]")
    thread.join()


def chat_once(agent: Agent, text: str, stream: bool, out: Console = console) -> None:
    if stream:
        printer = StreamPrinter(out)
        run_turn(agent, lambda: agent.process_user_message_stream(text), printer.feed, out)
    else:
        # The first entry is the user's own message.
        run_turn(agent, lambda: agent.process_user_message(text)[1:],
                 lambda entry: render_entry(out, entry), out)


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """groq-agent: Groq-powered coding assistant for your terminal."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--model", "-m", default=None, help="Model preset name or litellm model id")
@click.option("--project-dir", "-d", default=".", help="Project directory")
@click.option("--auto-confirm", "-y", is_flag=True, help="Auto-confirm all")
@click.option("--no-stream", is_flag=True, help="Wait for whole responses")
@click.option("--resume", "resume_id", default=None, help="Resume a saved session by id")
@click.option("--continue", "-c", "continue_last", is_flag=True, help="Continue the last session")
@click.option("--api-key", "-k", default=None, help="Groq API key (or set GROQ_API_KEY)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(model, project_dir, auto_confirm, no_stream, resume_id, continue_last, api_key, verbose):
    """Start an interactive session."""
    console.print(build_banner(__version__))
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, model)
    if auto_confirm:
        config.auto_confirm = True
    if no_stream:
        config.stream = False
    if verbose:
        config.verbose = True
    setup_logger(verbose=config.verbose, console=False)

    api_key = api_key or _first_run_api_key(config)
    sessions = SessionManager()
    agent = build_agent(config, sessions, api_key=api_key)
    _apply_model_override(agent, config, model)

    session = None
    if resume_id:
        session = sessions.load_session(resume_id)
        if session is None:
            console.print(f"  [{WARN}]Session not found: {resume_id}[/{WARN}]")
    elif continue_last:
        session = sessions.get_last_session()
    if session is not None:
        agent.load_session(session)
    else:
        session = sessions.create_session(agent.get_current_directory())

    render_startup(console, config, session.id, has_key=bool(agent.client.api_key))
    if session.messages:
        console.print(f"[dim]Resumed {len(session.messages)} messages[/dim]\n")

    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.shortcuts import CompleteStyle

    config_module.CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    prompt_session = PromptSession(
        history=FileHistory(str(config_module.HISTORY_FILE)),
        multiline=False,
        completer=SlashCommandCompleter(max_items=MAX_SLASH_MENU_ITEMS),
        complete_while_typing=True,
        style=PTK_STYLE,
        complete_style=CompleteStyle.COLUMN,
    )

    repl_kb = KeyBindings()

    @repl_kb.add("escape", "enter")
    def _newline(event):
        event.current_buffer.insert_text("\n")

    pending_ctrl_d_exit = False

    while True:
        try:
            user_input = prompt_session.prompt(make_prompt_html(), key_bindings=repl_kb).strip()
            pending_ctrl_d_exit = False
        except EOFError:
            if pending_ctrl_d_exit:
                console.print("\n[dim]Goodbye![/dim]")
                break
            pending_ctrl_d_exit = True
            console.print("\n[dim]Press Ctrl-D again to exit.[/dim]")
            continue
        except KeyboardInterrupt:
            continue

        if not user_input:
            continue

        if user_input.startswith("/"):
            result = handle_command(user_input, console=console, agent=agent,
                                    config=config, sessions=sessions)
            if result == "quit":
                break
            continue

        try:
            chat_once(agent, user_input, config.stream)
        except Exception as error:
            console.print(f"\n[red]  Error: {error}[/red]")
            if config.verbose:
                import traceback

                console.print(f"[dim]{traceback.format_exc()}[/dim]")


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--model", "-m", default=None)
@click.option("--project-dir", "-d", default=".")
@click.option("--auto-confirm", "-y", is_flag=True, help="Auto-confirm all")
@click.option("--no-stream", is_flag=True, help="Wait for the whole response")
@click.option("--api-key", "-k", default=None, help="Groq API key (or set GROQ_API_KEY)")
@click.option("--verbose", "-v", is_flag=True)
def ask(message, model, project_dir, auto_confirm, no_stream, api_key, verbose):
    """Run a single query."""
    config = _load_config(project_dir, model)
    if auto_confirm:
        config.auto_confirm = True
    setup_logger(verbose=verbose or config.verbose)

    agent = build_agent(config, api_key=api_key)
    _apply_model_override(agent, config, model)
    chat_once(agent, " ".join(message), config.stream and not no_stream)


@cli.command(name="config")
@click.option("--project-dir", "-d", default=".")
def config_cmd(project_dir):
    """Show the resolved configuration."""
    config = Config.load(project_dir)
    show_config_panel(console, config)
    console.print(f"[dim]Source: {config._config_source}[/dim]")


if __name__ == "__main__":
    cli()
