"""Chat-completions transport via litellm, with ranked model fallback."""

from typing import Any, Dict, Generator, List, Optional, Sequence

import litellm
import requests

from .errors import TransportError
from .logger import get_logger

litellm.suppress_debug_info = True

_log = get_logger(__name__)

DEFAULT_MODELS = [
    "groq/llama-3.3-70b-versatile",
    "groq/llama3-70b-8192",
    "groq/gemma2-9b-it",
]
GROQ_API_BASE = "https://api.groq.com/openai/v1"

# Errors that mean "this model cannot serve the request", not "the request is bad".
FALLBACK_MARKERS = (
    "tool call validation failed",
    "tool_use_failed",
    "decommissioned",
    "deprecated",
)


def _should_fall_back(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in FALLBACK_MARKERS)


def _describe(error: Exception) -> str:
    if isinstance(error, litellm.exceptions.AuthenticationError):
        return f"Authentication failed. Check GROQ_API_KEY. {error}"
    if isinstance(error, litellm.exceptions.APIConnectionError):
        return f"Cannot connect to the API. {error}"
    return f"{type(error).__name__}: {error}"


def _wire_tool_calls(tool_calls) -> List[Dict[str, Any]]:
    result = []
    for tc in tool_calls or []:
        function = getattr(tc, "function", None)
        result.append({
            "id": getattr(tc, "id", None) or "",
            "type": "function",
            "function": {
                "name": getattr(function, "name", None) or "",
                "arguments": getattr(function, "arguments", None) or "",
            },
        })
    return result


def _delta_to_dict(delta) -> Dict[str, Any]:
    """Sparse dict view of a litellm streaming delta; None fields are dropped."""
    out: Dict[str, Any] = {}
    for key in ("role", "content", "reasoning_content"):
        value = getattr(delta, key, None)
        if value is not None:
            out[key] = value

    tool_calls = getattr(delta, "tool_calls", None)
    if tool_calls:
        items = []
        for tc in tool_calls:
            item: Dict[str, Any] = {}
            for key in ("index", "id", "type"):
                value = getattr(tc, key, None)
                if value is not None:
                    item[key] = value
            function = getattr(tc, "function", None)
            if function is not None:
                fn: Dict[str, Any] = {}
                for key in ("name", "arguments"):
                    value = getattr(function, key, None)
                    if value is not None:
                        fn[key] = value
                item["function"] = fn
            items.append(item)
        out["tool_calls"] = items
    return out


class GroqClient:
    """Thin transport: ``chat`` returns a message dict, ``chat_stream`` yields deltas.

    Each call walks ``models`` from the current position. Only errors matching
    ``FALLBACK_MARKERS`` move on to the next model; the model that finally
    answers becomes the current one for later calls.
    """

    def __init__(self, models: Optional[Sequence[str]] = None, temperature: float = 0.7,
                 max_tokens: int = 4000, api_key: Optional[str] = None,
                 api_base: Optional[str] = None, timeout: int = 360):
        self.models: List[str] = list(DEFAULT_MODELS if models is None else models)
        if not self.models:
            raise ValueError("GroqClient needs at least one model")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self._index = 0

    @property
    def current_model(self) -> str:
        return self.models[self._index]

    def set_model(self, model: str) -> None:
        if model in self.models:
            self.models.remove(model)
        self.models.insert(0, model)
        self._index = 0

    def _kwargs(self, model: str, messages: List[Dict[str, Any]],
                tools: Optional[List[Dict]], stream: bool) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if stream:
            kwargs["stream"] = True
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    def _fail(self, model: str, position: int, error: Exception) -> None:
        """Raise unless ``error`` allows trying the next model."""
        if _should_fall_back(error):
            if position < len(self.models) - 1:
                _log.warning("Model %s failed (%s); trying next model", model, error)
                return
            raise TransportError(
                f"API error after trying all models: {_describe(error)}", self.models
            ) from error
        raise TransportError(f"API error ({model}): {_describe(error)}", [model]) from error

    def chat(self, messages: List[Dict[str, Any]],
             tools: Optional[List[Dict]] = None) -> Dict[str, Any]:
        for position in range(self._index, len(self.models)):
            model = self.models[position]
            try:
                response = litellm.completion(**self._kwargs(model, messages, tools, stream=False))
            except Exception as e:
                self._fail(model, position, e)
                continue

            self._index = position
            msg = response.choices[0].message
            result: Dict[str, Any] = {"role": "assistant", "content": msg.content or ""}
            tool_calls = _wire_tool_calls(getattr(msg, "tool_calls", None))
            if tool_calls:
                result["tool_calls"] = tool_calls
            return result
        raise TransportError("API error: no model available", self.models)

    def chat_stream(self, messages: List[Dict[str, Any]],
                    tools: Optional[List[Dict]] = None
                    ) -> Generator[Dict[str, Any], None, None]:
        """Yield sparse delta dicts. Falls back only before the first delta."""
        for position in range(self._index, len(self.models)):
            model = self.models[position]
            yielded = False
            try:
                stream = litellm.completion(**self._kwargs(model, messages, tools, stream=True))
                for chunk in stream:
                    choices = getattr(chunk, "choices", None)
                    if not choices:
                        continue
                    delta = _delta_to_dict(choices[0].delta)
                    if not delta:
                        continue
                    if not yielded:
                        self._index = position
                        yielded = True
                    yield delta
            except Exception as e:
                if yielded:
                    raise TransportError(
                        f"Stream interrupted ({model}): {_describe(e)}", [model]
                    ) from e
                self._fail(model, position, e)
                continue

            self._index = position
            return
        raise TransportError("API error: no model available", self.models)

    def fetch_models(self) -> List[str]:
        """List model ids the Groq endpoint currently serves."""
        base = (self.api_base or GROQ_API_BASE).rstrip("/")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = requests.get(f"{base}/models", headers=headers, timeout=30)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"Failed to fetch models: {e}") from e
        return sorted(item.get("id", "") for item in resp.json().get("data", []))
