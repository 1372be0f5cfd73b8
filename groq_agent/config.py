"""
Configuration: model presets, fallback chain and agent limits.

Loading priority:
  1. Project dir .groq.conf.yml
  2. Git root .groq.conf.yml
  3. Global ~/.groq/config.yml

Secrets come from the environment (GROQ_API_KEY), optionally via .env files.
A Groq key entered at the first-run prompt is kept in ~/.groq/user-settings.json.
"""

import json
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Callable, Any

import yaml
from dotenv import load_dotenv

from .logger import get_logger

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".groq"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
USER_SETTINGS_NAME = "user-settings.json"
PROJECT_CONFIG_NAME = ".groq.conf.yml"

STREAM_ARGUMENT_MODES = {"replace", "append"}
DEFAULT_PRESET = "llama-3.3-70b"
DEFAULT_FALLBACK_MODELS = ["llama3-70b", "gemma2-9b"]
DEFAULT_BLOCKED_COMMANDS = ["rm -rf /", "rm -rf /*", "mkfs", "dd if=", "> /dev/sda", ":(){:|:&};:"]


# ── Field table ──


@dataclass
class ConfigFieldSpec:
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "bool", "list"
    default: Any
    validator: Optional[Callable[[Any], tuple]] = None  # -> (valid, coerced_value, error_msg)
    env_var: Optional[str] = None

    def default_value(self) -> Any:
        return list(self.default) if isinstance(self.default, list) else self.default

    def coerce(self, raw: Any) -> Any:
        """Lenient conversion for file and environment values.

        Out-of-range integers are clamped; anything else unusable falls back
        to the default.
        """
        ok, value, _ = validate_config_value(self.key, raw)
        if ok:
            return value
        if self.value_type == "int" and isinstance(value, int):
            return value
        return self.default_value()


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return False, None, "Must be an integer"
    if not min_val <= number <= max_val:
        return False, max(min_val, min(max_val, number)), f"Must be between {min_val} and {max_val}"
    return True, number, ""


def _validate_enum(value: Any, valid_values: set) -> tuple:
    choice = str(value).strip().lower()
    if choice in valid_values:
        return True, choice, ""
    return False, None, f"Must be one of: {', '.join(sorted(valid_values))}"


_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off")


def _validate_bool(value: Any) -> tuple:
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, int):
        return True, bool(value), ""
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True, True, ""
    if word in _FALSE_WORDS:
        return True, False, ""
    return False, None, "Must be true/false, yes/no, on/off, or 1/0"


def _validate_name_list(value: Any) -> tuple:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(part) for part in value]
    else:
        return False, None, "Must be a comma-separated list"
    return True, [item.strip() for item in items if item.strip()], ""


def _int_field(key: str, attr: str, description: str, default: int, low: int, high: int):
    return ConfigFieldSpec(key, attr, description, "int", default,
                           lambda v: _validate_int_range(v, low, high))


def _bool_field(key: str, attr: str, description: str, default: bool, env_var: Optional[str] = None):
    return ConfigFieldSpec(key, attr, description, "bool", default, _validate_bool, env_var)


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {
    spec.key: spec for spec in [
        ConfigFieldSpec("active-model", "active_model", "Model preset used first",
                        "str", DEFAULT_PRESET, env_var="GROQ_MODEL"),
        ConfigFieldSpec("fallback-models", "fallback_models",
                        "Presets or litellm model ids tried when the active model fails",
                        "list", DEFAULT_FALLBACK_MODELS, _validate_name_list),
        _int_field("max-tool-rounds", "max_tool_rounds",
                   "Tool rounds per turn (non-streaming)", 10, 1, 100),
        _int_field("max-stream-tool-rounds", "max_stream_tool_rounds",
                   "Tool rounds per turn (streaming)", 30, 1, 200),
        _bool_field("stream", "stream", "Stream model output token by token", True),
        _bool_field("simple-mode", "simple_mode", "Chat without offering tools to the model",
                    False, "GROQ_SIMPLE_MODE"),
        _bool_field("auto-confirm", "auto_confirm", "Run file edits and commands without asking",
                    False, "GROQ_AUTO_CONFIRM"),
        _int_field("command-timeout", "command_timeout", "Shell command timeout in seconds", 30, 5, 600),
        ConfigFieldSpec("stream-tool-arguments", "stream_tool_arguments",
                        "How streamed tool arguments merge: replace or append", "str", "replace",
                        lambda v: _validate_enum(v, STREAM_ARGUMENT_MODES)),
        _bool_field("verbose", "verbose", "Enable debug logging", False, "GROQ_VERBOSE"),
    ]
}


def validate_config_value(key: str, value: Any) -> tuple:
    """Return ``(is_valid, coerced_value, error_message)``."""
    spec = CONFIG_FIELDS.get(key)
    if spec is None:
        return False, value, f"Unknown configuration key: {key}"
    if spec.validator:
        return spec.validator(value)
    return True, str(value), ""


# ── User settings ──


def user_settings_file() -> Path:
    return CONFIG_DIR / USER_SETTINGS_NAME


def _read_user_settings() -> dict:
    path = user_settings_file()
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _log.warning("Cannot read %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def load_user_api_key() -> Optional[str]:
    key = _read_user_settings().get("apiKey")
    if isinstance(key, str) and key.strip():
        return key.strip()
    return None


def save_user_api_key(api_key: str) -> Path:
    """Store the key in user-settings.json, readable by the owner only."""
    CONFIG_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)
    path = user_settings_file()
    settings = _read_user_settings()
    settings["apiKey"] = api_key.strip()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    # os.open leaves the mode of an existing file alone.
    os.chmod(path, 0o600)
    _log.info("Saved API key to %s", path)
    return path


# ── Model presets ──

_PROVIDER_KEY_ENV = {
    "groq": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class ModelPreset:
    name: str
    provider: str
    model: str
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4000
    context_window: int = 131072
    description: str = ""

    def resolve_api_key(self) -> Optional[str]:
        """Inline key, else the named variable, else the provider's usual variable.

        Groq presets finally fall back to the key saved in user-settings.json.
        """
        if self.api_key:
            return self.api_key
        env_var = self.api_key_env or _PROVIDER_KEY_ENV.get(self.provider)
        key = os.environ.get(env_var) if env_var else None
        if not key and self.provider == "groq":
            key = load_user_api_key()
        return key

    @classmethod
    def from_yaml(cls, name: str, entry: dict) -> "ModelPreset":
        return cls(
            name=name,
            provider=entry.get("provider", "groq"),
            model=entry.get("model", "groq/llama-3.3-70b-versatile"),
            api_base=entry.get("api-base"),
            api_key=entry.get("api-key"),
            api_key_env=entry.get("api-key-env"),
            temperature=entry.get("temperature", 0.7),
            max_tokens=entry.get("max-tokens", 4000),
            context_window=entry.get("context-window", 131072),
            description=entry.get("description", ""),
        )

    def to_yaml(self) -> dict:
        entry = {
            "provider": self.provider,
            "model": self.model,
            "description": self.description,
            "temperature": self.temperature,
            "max-tokens": self.max_tokens,
            "context-window": self.context_window,
        }
        for key, value in (("api-base", self.api_base), ("api-key", self.api_key),
                           ("api-key-env", self.api_key_env)):
            if value:
                entry[key] = value
        return entry


def default_presets() -> Dict[str, ModelPreset]:
    def groq(name: str, model: str, description: str, context_window: int = 131072):
        return ModelPreset(name=name, provider="groq", model=f"groq/{model}",
                           api_key_env="GROQ_API_KEY", description=description,
                           context_window=context_window)

    return {
        "llama-3.3-70b": groq("llama-3.3-70b", "llama-3.3-70b-versatile",
                              "Llama 3.3 70B, best tool support"),
        "llama3-70b": groq("llama3-70b", "llama3-70b-8192",
                           "Llama 3 70B, stable alternative", 8192),
        "gemma2-9b": groq("gemma2-9b", "gemma2-9b-it", "Gemma 2 9B, small and fast", 8192),
        "llama-3.1-8b": groq("llama-3.1-8b", "llama-3.1-8b-instant", "Llama 3.1 8B instant"),
    }


# ── Config ──


@dataclass
class Config:
    active_model: str = DEFAULT_PRESET
    models: Dict[str, ModelPreset] = field(default_factory=dict)
    fallback_models: List[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_MODELS))
    max_tool_rounds: int = 10
    max_stream_tool_rounds: int = 30
    stream: bool = True
    simple_mode: bool = False
    auto_confirm: bool = False
    command_timeout: int = 30
    stream_tool_arguments: str = "replace"
    verbose: bool = False
    tavily_api_key: Optional[str] = None
    blocked_commands: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS))
    project_root: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        project_path = Path(project_dir).resolve()

        for env_file in (CONFIG_DIR / ".env", project_path / ".env"):
            if env_file.exists():
                load_dotenv(env_file, override=False)

        source = cls._find_config_file(project_path)
        if source is not None:
            config._load_yaml(source)
            config._config_source = str(source)
        else:
            config.models = default_presets()
            config._config_source = str(CONFIG_FILE)
            config.save()

        config._apply_env()
        config.project_root = str(project_path)
        return config

    @staticmethod
    def _find_config_file(project_path: Path) -> Optional[Path]:
        candidates = [project_path / PROJECT_CONFIG_NAME]
        git_root = _find_git_root(project_path)
        if git_root is not None and git_root != project_path:
            candidates.append(git_root / PROJECT_CONFIG_NAME)
        candidates.append(CONFIG_FILE)
        return next((path for path in candidates if path.exists()), None)

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Cannot read %s, using defaults: %s", filepath, e)
            data = {}
        if not isinstance(data, dict):
            _log.warning("%s is not a mapping, using defaults", filepath)
            data = {}

        for key, spec in CONFIG_FIELDS.items():
            if key in data:
                setattr(self, spec.field_name, spec.coerce(data[key]))
        self.tavily_api_key = data.get("tavily-api-key")
        if isinstance(data.get("blocked-commands"), list):
            self.blocked_commands = [str(item) for item in data["blocked-commands"]]

        self.models = {
            name: ModelPreset.from_yaml(name, entry)
            for name, entry in (data.get("models") or {}).items()
            if isinstance(entry, dict)
        }
        if not self.models:
            self.models = default_presets()

    def _apply_env(self):
        for spec in CONFIG_FIELDS.values():
            raw = os.environ.get(spec.env_var) if spec.env_var else None
            if raw:
                setattr(self, spec.field_name, spec.coerce(raw))

    def save(self, filepath: Optional[str] = None):
        target = Path(filepath or self._config_source or CONFIG_FILE)
        target.parent.mkdir(parents=True, exist_ok=True)

        data = {key: getattr(self, spec.field_name) for key, spec in CONFIG_FIELDS.items()}
        data["blocked-commands"] = self.blocked_commands
        if self.tavily_api_key:
            data["tavily-api-key"] = self.tavily_api_key
        data["models"] = {name: preset.to_yaml() for name, preset in self.models.items()}

        with open(target, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        self._config_source = str(target)

    def resolve_tavily_key(self) -> Optional[str]:
        return self.tavily_api_key or os.environ.get("TAVILY_API_KEY")

    def get_active_preset(self) -> ModelPreset:
        if self.active_model in self.models:
            return self.models[self.active_model]
        if self.models:
            return next(iter(self.models.values()))
        return default_presets()[DEFAULT_PRESET]

    def set_active_model(self, name: str) -> bool:
        if name not in self.models:
            return False
        self.active_model = name
        self.save()
        return True

    def model_chain(self) -> List[str]:
        """Ranked litellm model ids: the active preset first, then fallbacks."""
        chain = [self.get_active_preset().model]
        for name in self.fallback_models:
            model = self.models[name].model if name in self.models else name
            if model not in chain:
                chain.append(model)
        return chain

    def list_models(self) -> List[Dict]:
        return [
            {"name": name, "active": name == self.active_model, "model": preset.model,
             "key": bool(preset.resolve_api_key()), "context": preset.context_window,
             "desc": preset.description}
            for name, preset in self.models.items()
        ]

    def summary(self) -> dict:
        preset = self.get_active_preset()
        on_off = lambda flag: "ON" if flag else "OFF"
        return {
            "Active model": f"{self.active_model} → {preset.model}",
            "Fallbacks": ", ".join(self.fallback_models) or "(none)",
            "API key": "✓" if preset.resolve_api_key() else "✗ not set",
            "Streaming": on_off(self.stream),
            "Simple mode": on_off(self.simple_mode),
            "Auto-confirm": on_off(self.auto_confirm),
            "Tool rounds": f"{self.max_tool_rounds} / {self.max_stream_tool_rounds} (stream)",
            "Command timeout": f"{self.command_timeout}s",
            "Project": self.project_root,
            "Config": self._config_source or "(defaults)",
        }

    # ── /config support ──

    def get_config_value(self, key: str) -> Any:
        spec = CONFIG_FIELDS.get(key)
        return getattr(self, spec.field_name, spec.default) if spec else None

    def set_config_value(self, key: str, value: Any) -> tuple:
        """Validate, apply and persist one key. Returns ``(success, error_message)``."""
        if key == "active-model" and value not in self.models:
            return False, f"Model '{value}' not found. Use /models to see available presets."

        is_valid, coerced, error_msg = validate_config_value(key, value)
        if not is_valid:
            return False, error_msg
        setattr(self, CONFIG_FIELDS[key].field_name, coerced)
        self.save()
        return True, ""

    def reset_config_value(self, key: str) -> tuple:
        spec = CONFIG_FIELDS.get(key)
        if spec is None:
            return False, f"Unknown configuration key: {key}"
        setattr(self, spec.field_name, spec.default_value())
        self.save()
        return True, ""


def _find_git_root(path: Path) -> Optional[Path]:
    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate
    return None
