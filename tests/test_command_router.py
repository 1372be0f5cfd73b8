"""Tests for slash-command routing."""

import io
import json

import pytest
from rich.console import Console

from groq_agent.agent import Agent
from groq_agent.command_router import _resolve_command, apply_config_to_agent, handle_command
from groq_agent.config import Config
from groq_agent.confirmation import ConfirmationService
from groq_agent.errors import TransportError
from groq_agent.session import SessionManager
from groq_agent.tools import ToolRegistry


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def config(config_yaml_file, tmp_dir):
    return Config.load(str(tmp_dir))


@pytest.fixture
def agent(tmp_dir, scripted_client):
    return Agent(scripted_client(model="groq/llama-3.1-8b-instant"),
                 ToolRegistry(cwd=str(tmp_dir)),
                 confirmation=ConfirmationService())


def run(command, console, agent, config, sessions=None):
    return handle_command(command, console=console, agent=agent, config=config, sessions=sessions)


def output(console):
    return console.file.getvalue()


class TestResolveCommand:

    @pytest.mark.parametrize("raw, expected", [
        ("/help", "/help"),
        ("/HELP", "/help"),
        ("/q", "/quit"),
        ("/exit", "/quit"),
        ("/pwd", "/cwd"),
        ("/pers", "/personality"),
        ("/si", "/simple"),
    ])
    def test_resolves(self, raw, expected):
        assert _resolve_command(raw) == expected

    def test_ambiguous_prefix_is_left_alone(self):
        assert _resolve_command("/s") == "/s"


def test_unknown_command(console, agent, config):
    assert run("/frobnicate", console, agent, config) == ""
    assert "Unknown: /frobnicate" in output(console)


def test_blank_command(console, agent, config):
    assert run("   ", console, agent, config) == ""


def test_quit(console, agent, config):
    assert run("/exit", console, agent, config) == "quit"


def test_help_lists_commands(console, agent, config):
    run("/help", console, agent, config)
    text = output(console)
    for command in ("/model", "/sessions", "/config", "/quit"):
        assert command in text


def test_simple_toggles(console, agent, config):
    run("/simple", console, agent, config)
    assert agent.simple_mode is True
    assert config.simple_mode is True
    run("/simple", console, agent, config)
    assert agent.simple_mode is False


class TestModel:

    def test_show_current(self, console, agent, config):
        run("/model", console, agent, config)
        assert "groq/llama-3.1-8b-instant" in output(console)

    def test_switch_to_preset(self, console, agent, config):
        run("/model big", console, agent, config)
        assert agent.get_current_model() == "groq/llama-3.3-70b-versatile"
        assert config.active_model == "big"

    def test_switch_to_raw_model_id(self, console, agent, config):
        run("/model groq/qwen-qwq-32b", console, agent, config)
        assert agent.get_current_model() == "groq/qwen-qwq-32b"
        assert config.active_model == "fast"

    def test_unknown_name(self, console, agent, config):
        run("/model nope", console, agent, config)
        assert "Unknown model" in output(console)
        assert agent.get_current_model() == "groq/llama-3.1-8b-instant"

    def test_models_table(self, console, agent, config):
        run("/models", console, agent, config)
        text = output(console)
        assert "fast" in text and "big" in text
        assert "128K" in text

    def test_remote_models_error(self, console, agent, config):
        def fail():
            raise TransportError("Failed to fetch models: offline")
        agent.client.fetch_models = fail

        run("/models remote", console, agent, config)

        assert "Failed to fetch models" in output(console)


class TestClear:

    def test_clears_history_and_approvals(self, console, agent, config):
        agent.messages.append({"role": "user", "content": "hi"})
        agent.confirmation.flags.bash_commands = True

        run("/clear", console, agent, config)

        assert len(agent.messages) == 1
        assert agent.confirmation.flags.bash_commands is False

    def test_starts_new_session(self, console, agent, config, tmp_path):
        sessions = SessionManager(tmp_path / "sessions")
        first = sessions.create_session("/a")

        run("/clear", console, agent, config, sessions=sessions)

        assert sessions.current.id != first.id
        assert "new session" in output(console)


class TestSessions:

    def test_disabled_without_manager(self, console, agent, config):
        run("/sessions", console, agent, config)
        assert "Sessions are disabled" in output(console)

    def test_resume_by_prefix(self, console, agent, config, tmp_path):
        sessions = SessionManager(tmp_path / "sessions")
        saved = sessions.create_session("/a")
        sessions.add_message({"role": "user", "content": "old question"})
        sessions.add_message({"role": "assistant", "content": "old answer"})
        sessions.create_session("/b")

        run(f"/resume {saved.id[:8]}", console, agent, config, sessions=sessions)

        assert [m["role"] for m in agent.messages] == ["system", "user", "assistant"]
        assert agent.chat_history[-1].content == "old answer"
        assert sessions.current.id == saved.id

    def test_resume_unknown(self, console, agent, config, tmp_path):
        sessions = SessionManager(tmp_path / "sessions")
        run("/resume zzz", console, agent, config, sessions=sessions)
        assert "No session matches: zzz" in output(console)

    def test_title(self, console, agent, config, tmp_path):
        sessions = SessionManager(tmp_path / "sessions")
        session = sessions.create_session("/a")

        run("/title Parser cleanup", console, agent, config, sessions=sessions)

        assert sessions.list_sessions()[0].title == "Parser cleanup"
        data = json.loads((sessions.sessions_dir / f"{session.id}.json").read_text(encoding="utf-8"))
        assert data["title"] == "Parser cleanup"


class TestConfigCommand:

    def test_show_single_value(self, console, agent, config):
        run("/config command-timeout", console, agent, config)
        assert "command-timeout" in output(console)
        assert "45" in output(console)

    def test_set_applies_to_agent(self, console, agent, config):
        run("/config max-tool-rounds 3", console, agent, config)
        run("/config command-timeout 90", console, agent, config)

        assert config.max_tool_rounds == 3
        assert agent.max_tool_rounds == 3
        assert agent.tools.shell.timeout == 90

    def test_invalid_value(self, console, agent, config):
        run("/config command-timeout 1", console, agent, config)
        assert "between 5 and 600" in output(console)
        assert config.command_timeout == 45

    def test_unknown_key(self, console, agent, config):
        run("/config colour red", console, agent, config)
        assert "Unknown configuration key: colour" in output(console)

    def test_reset_to_default(self, console, agent, config):
        run("/config max-stream-tool-rounds default", console, agent, config)
        assert config.max_stream_tool_rounds == 30


def test_apply_config_sets_auto_confirm(agent, config):
    apply_config_to_agent(agent, config)

    assert agent.confirmation.flags.all_operations is True
    assert agent.max_stream_tool_rounds == 12


def test_personality_preset_updates_system_prompt(console, agent, config, tmp_dir):
    run("/personality english_coder", console, agent, config)

    assert (tmp_dir / ".groq" / "assistant.json").is_file()
    assert agent.messages[0]["content"].startswith("Your name is DevBot.")


def test_cwd(console, agent, config, tmp_dir):
    run("/pwd", console, agent, config)
    assert str(tmp_dir.resolve()) in output(console)
