"""Tests for the non-streaming agent loop."""

import json

import pytest

from groq_agent.agent import EMPTY_ANSWER, TOOL_USE_PLACEHOLDER, Agent, parse_tool_arguments
from groq_agent.errors import TransportError
from groq_agent.extractor import TOOL_NAMES
from groq_agent.messages import ToolResult
from groq_agent.session import SessionManager


class FakeTools:
    names = list(TOOL_NAMES)
    schemas = [{"type": "function", "function": {"name": "bash"}}]

    def __init__(self, cwd="/work"):
        self.cwd = cwd
        self.executed = []

    def get_current_directory(self):
        return self.cwd

    def execute(self, name, args):
        self.executed.append((name, args))
        return ToolResult.ok(f"ran {name}")


def _tool_call_message(call_id="call_1", command="ls", content=""):
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": [{
            "id": call_id, "type": "function",
            "function": {"name": "bash", "arguments": json.dumps({"command": command})},
        }],
    }


def _answer(text):
    return {"role": "assistant", "content": text}


def _agent(client, **kwargs):
    tools = kwargs.pop("tools", None) or FakeTools()
    return Agent(client, tools, **kwargs)


def test_plain_answer(scripted_client):
    client = scripted_client(responses=[_answer("Hi there")])
    agent = _agent(client)

    entries = agent.process_user_message("hello")

    assert [e.type for e in entries] == ["user", "assistant"]
    assert entries[0].content == "hello"
    assert entries[1].content == "Hi there"
    assert [m["role"] for m in agent.messages] == ["system", "user", "assistant"]
    assert client.calls[0].tools == FakeTools.schemas


def test_single_tool_round(scripted_client):
    client = scripted_client(responses=[_tool_call_message(), _answer("Done")])
    tools = FakeTools()
    agent = _agent(client, tools=tools)

    entries = agent.process_user_message("list files")

    assert [e.type for e in entries] == ["user", "assistant", "tool_result", "assistant"]
    assert entries[1].content == TOOL_USE_PLACEHOLDER
    assert entries[1].tool_calls[0].name == "bash"
    assert entries[2].tool_result.success is True
    assert entries[2].content == "ran bash"
    assert entries[3].content == "Done"
    assert tools.executed == [("bash", {"command": "ls"})]

    roles = [m["role"] for m in agent.messages]
    assert roles == ["system", "user", "assistant", "tool", "assistant"]
    tool_msg = agent.messages[3]
    assert tool_msg["tool_call_id"] == "call_1"
    assert tool_msg["content"] == "ran bash"


def test_message_count_grows_by_two_per_round(scripted_client):
    client = scripted_client(responses=[
        _tool_call_message("a"), _tool_call_message("b"), _tool_call_message("c"), _answer("ok"),
    ])
    agent = _agent(client)

    agent.process_user_message("go")

    # system + user + 2 per round + final answer
    assert len(agent.messages) == 1 + 1 + 2 * 3 + 1


def test_round_limit_stops_without_another_call(scripted_client):
    client = scripted_client(responses=[_tool_call_message("a"), _tool_call_message("b"),
                                        _tool_call_message("c")])
    agent = _agent(client, max_tool_rounds=2)

    entries = agent.process_user_message("loop forever")

    assert len(client.calls) == 2
    assert entries[-1].type == "assistant"
    assert entries[-1].content == (
        "Reached maximum tool execution rounds (2). Stopping to prevent an endless tool loop."
    )
    assert [m["role"] for m in agent.messages][-1] == "tool"


def test_transport_error_becomes_error_entry(scripted_client):
    client = scripted_client(responses=[TransportError("boom")])
    agent = _agent(client)

    entries = agent.process_user_message("hello")

    assert [e.type for e in entries] == ["user", "assistant"]
    assert entries[-1].content == "Sorry, I encountered an error: boom"
    assert [m["role"] for m in agent.messages] == ["system", "user"]


def test_error_after_tool_round_keeps_earlier_entries(scripted_client):
    client = scripted_client(responses=[_tool_call_message(), RuntimeError("lost")])
    agent = _agent(client)

    entries = agent.process_user_message("hello")

    assert [e.type for e in entries] == ["user", "assistant", "tool_result", "assistant"]
    assert entries[-1].content.startswith("Sorry, I encountered an error:")


def test_empty_answer_gets_placeholder(scripted_client):
    client = scripted_client(responses=[_answer("")])
    agent = _agent(client)

    entries = agent.process_user_message("hmm")

    assert entries[-1].content == EMPTY_ANSWER
    assert agent.messages[-1]["content"] == ""


def test_inline_call_is_recovered_and_executed(scripted_client):
    client = scripted_client(responses=[
        _answer('Checking.\n<function=bash {"command": "pwd"}></function>'),
        _answer("You are in /work"),
    ])
    tools = FakeTools()
    agent = _agent(client, tools=tools)

    entries = agent.process_user_message("where am I")

    assert tools.executed == [("bash", {"command": "pwd"})]
    assert entries[1].content == "Checking."
    assert agent.messages[2]["content"] == "Checking."
    assert agent.messages[2]["tool_calls"][0]["function"]["name"] == "bash"


def test_invalid_arguments_are_fed_back(scripted_client):
    bad = _tool_call_message()
    bad["tool_calls"][0]["function"]["arguments"] = "not json"
    client = scripted_client(responses=[bad, _answer("sorry")])
    tools = FakeTools()
    agent = _agent(client, tools=tools)

    entries = agent.process_user_message("go")

    assert tools.executed == []
    assert entries[2].tool_result.success is False
    assert entries[2].content.startswith("Invalid JSON in tool arguments:")
    assert agent.messages[3]["content"].startswith("Invalid JSON in tool arguments:")


def test_simple_mode_sends_no_tools(scripted_client):
    client = scripted_client(responses=[_answer("chat only")])
    agent = _agent(client, simple_mode=True)

    agent.process_user_message("hi")

    assert client.calls[0].tools is None


def test_messages_are_persisted_to_session(scripted_client, tmp_path):
    sessions = SessionManager(tmp_path / "sessions")
    session = sessions.create_session("/work")
    client = scripted_client(responses=[_answer("stored")])
    agent = _agent(client, session_manager=sessions)

    agent.process_user_message("remember me")

    reloaded = SessionManager(tmp_path / "sessions").load_session(session.id)
    assert [m["role"] for m in reloaded.messages] == ["user", "assistant"]
    assert reloaded.messages[1]["content"] == "stored"


def test_load_session_restores_entries_and_keeps_system(scripted_client, tmp_path):
    sessions = SessionManager(tmp_path / "sessions")
    session = sessions.create_session("/work")
    session.messages = [
        {"role": "system", "content": "old system"},
        {"role": "user", "content": "list"},
        _tool_call_message("call_9"),
        {"role": "tool", "tool_call_id": "call_9", "name": "bash", "content": "a.txt"},
        {"role": "assistant", "content": "One file."},
    ]
    agent = _agent(scripted_client())
    system = agent.messages[0]

    agent.load_session(session)

    assert agent.messages[0] is system
    assert len(agent.messages) == 5
    history = agent.get_chat_history()
    assert [e.type for e in history] == ["user", "assistant", "tool_result", "assistant"]
    assert history[2].tool_call.name == "bash"
    assert history[2].content == "a.txt"


def test_clear_keeps_system_message(scripted_client):
    agent = _agent(scripted_client(responses=[_answer("x")]))
    agent.process_user_message("hi")

    agent.clear()

    assert len(agent.messages) == 1
    assert agent.messages[0]["role"] == "system"
    assert agent.get_chat_history() == []


def test_system_prompt_includes_working_directory(scripted_client):
    agent = _agent(scripted_client(), tools=FakeTools(cwd="/projects/demo"))
    assert "Current working directory: /projects/demo" in agent.messages[0]["content"]


def test_model_utilities_delegate_to_client(scripted_client):
    client = scripted_client()
    agent = _agent(client)

    agent.set_model("groq/other")

    assert agent.get_current_model() == "groq/other"
    assert agent.get_current_directory() == "/work"


class TestParseToolArguments:

    def test_blank_is_empty_object(self):
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("   ") == {}

    def test_trailing_junk_is_trimmed(self):
        assert parse_tool_arguments('{"path": "a"} </function>') == {"path": "a"}

    def test_non_object_is_rejected(self):
        with pytest.raises(ValueError):
            parse_tool_arguments("[1, 2]")

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError):
            parse_tool_arguments("{not json")
