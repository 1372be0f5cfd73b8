"""Shared fixtures for groq-agent tests."""

import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import yaml

import groq_agent.config as config_module
import groq_agent.tokenizer as tokenizer_module


@pytest.fixture(autouse=True)
def isolated_home(tmp_path_factory, monkeypatch):
    """Point ~/.groq at a throwaway directory for every test."""
    home = tmp_path_factory.mktemp("home")
    config_dir = home / ".groq"
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(config_module, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_dir / "config.yml")
    monkeypatch.setattr(config_module, "HISTORY_FILE", config_dir / "history.txt")
    for var in ("GROQ_MODEL", "GROQ_AUTO_CONFIRM", "GROQ_VERBOSE", "GROQ_SIMPLE_MODE",
                "TAVILY_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    return config_dir


@pytest.fixture(autouse=True)
def offline_tokenizer(monkeypatch):
    """Use the character heuristic so no tiktoken download is attempted."""
    monkeypatch.setattr(tokenizer_module, "_get_encoder", lambda model=None: None)


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture
def sample_config_data():
    """Minimal .groq.conf.yml data dict."""
    return {
        "active-model": "fast",
        "fallback-models": ["big", "groq/gemma2-9b-it"],
        "max-tool-rounds": 5,
        "max-stream-tool-rounds": 12,
        "stream": False,
        "simple-mode": False,
        "auto-confirm": True,
        "command-timeout": 45,
        "stream-tool-arguments": "append",
        "verbose": False,
        "blocked-commands": ["shutdown"],
        "models": {
            "fast": {
                "provider": "groq",
                "model": "groq/llama-3.1-8b-instant",
                "description": "Test model",
                "temperature": 0.0,
                "max-tokens": 1024,
                "context-window": 131072,
                "api-key-env": "TEST_GROQ_KEY",
            },
            "big": {
                "provider": "groq",
                "model": "groq/llama-3.3-70b-versatile",
                "description": "Big test model",
            },
        },
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".groq.conf.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    c.input = MagicMock(return_value="n")
    return c


class ScriptedClient:
    """Transport double: replays canned messages or delta lists, one per call."""

    def __init__(self, responses=None, streams=None, model="groq/test-model"):
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.current_model = model
        self.calls = []

    def chat(self, messages, tools=None):
        self.calls.append(SimpleNamespace(messages=list(messages), tools=tools))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def chat_stream(self, messages, tools=None):
        self.calls.append(SimpleNamespace(messages=list(messages), tools=tools))
        item = self.streams.pop(0)
        if callable(item):
            yield from item()
            return
        for delta in item:
            if isinstance(delta, Exception):
                raise delta
            yield delta

    def set_model(self, model):
        self.current_model = model


@pytest.fixture
def scripted_client():
    return ScriptedClient
