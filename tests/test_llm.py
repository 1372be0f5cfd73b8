"""Tests for the litellm transport and its model fallback."""

from types import SimpleNamespace

import pytest
import requests

import groq_agent.llm as llm_module
from groq_agent.errors import TransportError
from groq_agent.llm import GroqClient, _delta_to_dict


def _response(content="", tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _chunk(**delta):
    fields = {"role": None, "content": None, "reasoning_content": None, "tool_calls": None}
    fields.update(delta)
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(**fields))])


class FakeCompletion:
    """Stands in for litellm.completion; each entry is a result or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def completion(monkeypatch):
    def install(*outcomes):
        fake = FakeCompletion(*outcomes)
        monkeypatch.setattr(llm_module.litellm, "completion", fake)
        return fake
    return install


class TestChat:

    def test_plain_answer(self, completion):
        fake = completion(_response("hello"))
        client = GroqClient(["groq/a"], api_key="k", max_tokens=99)

        result = client.chat([{"role": "user", "content": "hi"}])

        assert result == {"role": "assistant", "content": "hello"}
        assert fake.calls[0]["model"] == "groq/a"
        assert fake.calls[0]["api_key"] == "k"
        assert fake.calls[0]["max_tokens"] == 99
        assert "tools" not in fake.calls[0]

    def test_tool_calls_are_converted(self, completion):
        call = SimpleNamespace(id="call_1", function=SimpleNamespace(name="bash", arguments='{"command": "ls"}'))
        fake = completion(_response(None, [call]))
        client = GroqClient(["groq/a"])

        result = client.chat([], tools=[{"type": "function"}])

        assert result["content"] == ""
        assert result["tool_calls"] == [{
            "id": "call_1", "type": "function",
            "function": {"name": "bash", "arguments": '{"command": "ls"}'},
        }]
        assert fake.calls[0]["tool_choice"] == "auto"

    def test_falls_back_on_tool_validation_error(self, completion):
        fake = completion(RuntimeError("tool_use_failed: bad call"), _response("from b"))
        client = GroqClient(["groq/a", "groq/b"])

        result = client.chat([])

        assert result["content"] == "from b"
        assert [c["model"] for c in fake.calls] == ["groq/a", "groq/b"]
        assert client.current_model == "groq/b"

    def test_other_errors_do_not_fall_back(self, completion):
        fake = completion(RuntimeError("rate limited"))
        client = GroqClient(["groq/a", "groq/b"])

        with pytest.raises(TransportError, match=r"API error \(groq/a\)"):
            client.chat([])
        assert len(fake.calls) == 1

    def test_all_models_exhausted(self, completion):
        completion(RuntimeError("model decommissioned"), RuntimeError("model decommissioned"))
        client = GroqClient(["groq/a", "groq/b"])

        with pytest.raises(TransportError, match="API error after trying all models"):
            client.chat([])


class TestChatStream:

    def test_yields_sparse_deltas(self, completion):
        tool_delta = SimpleNamespace(index=0, id="c1", type="function",
                                     function=SimpleNamespace(name="bash", arguments=None))
        completion(iter([
            _chunk(role="assistant", content="Hi"),
            SimpleNamespace(choices=[]),
            _chunk(tool_calls=[tool_delta]),
        ]))
        client = GroqClient(["groq/a"])

        deltas = list(client.chat_stream([]))

        assert deltas == [
            {"role": "assistant", "content": "Hi"},
            {"tool_calls": [{"index": 0, "id": "c1", "type": "function", "function": {"name": "bash"}}]},
        ]

    def test_fallback_before_first_delta(self, completion):
        fake = completion(RuntimeError("tool call validation failed"), iter([_chunk(content="ok")]))
        client = GroqClient(["groq/a", "groq/b"])

        assert list(client.chat_stream([])) == [{"content": "ok"}]
        assert fake.calls[1]["stream"] is True
        assert client.current_model == "groq/b"

    def test_error_after_first_delta_is_not_retried(self, completion):
        def broken():
            yield _chunk(content="partial")
            raise RuntimeError("tool_use_failed")

        fake = completion(broken())
        client = GroqClient(["groq/a", "groq/b"])
        stream = client.chat_stream([])

        assert next(stream) == {"content": "partial"}
        with pytest.raises(TransportError, match="Stream interrupted"):
            next(stream)
        assert len(fake.calls) == 1


def test_delta_to_dict_drops_empty_fields():
    delta = SimpleNamespace(role=None, content="", reasoning_content=None, tool_calls=[])
    assert _delta_to_dict(delta) == {"content": ""}


def test_set_model_moves_to_front():
    client = GroqClient(["groq/a", "groq/b"])
    client.set_model("groq/b")
    assert client.models == ["groq/b", "groq/a"]
    assert client.current_model == "groq/b"

    client.set_model("groq/new")
    assert client.models[0] == "groq/new"


def test_empty_model_list_is_rejected():
    with pytest.raises(ValueError):
        GroqClient([])


def test_no_model_list_uses_defaults():
    client = GroqClient()
    assert client.models == llm_module.DEFAULT_MODELS
    assert client.models is not llm_module.DEFAULT_MODELS


class TestFetchModels:

    def test_lists_sorted_ids(self, monkeypatch):
        seen = {}

        def fake_get(url, headers=None, timeout=None):
            seen["url"] = url
            seen["headers"] = headers
            resp = requests.Response()
            resp.status_code = 200
            resp._content = b'{"data": [{"id": "zeta"}, {"id": "alpha"}]}'
            return resp

        monkeypatch.setattr(llm_module.requests, "get", fake_get)
        client = GroqClient(["groq/a"], api_key="secret")

        assert client.fetch_models() == ["alpha", "zeta"]
        assert seen["url"] == "https://api.groq.com/openai/v1/models"
        assert seen["headers"] == {"Authorization": "Bearer secret"}

    def test_http_error(self, monkeypatch):
        def fake_get(url, headers=None, timeout=None):
            resp = requests.Response()
            resp.status_code = 401
            resp.url = url
            return resp

        monkeypatch.setattr(llm_module.requests, "get", fake_get)

        with pytest.raises(TransportError, match="Failed to fetch models"):
            GroqClient(["groq/a"]).fetch_models()
