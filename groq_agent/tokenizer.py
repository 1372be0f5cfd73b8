"""Token estimation for the streaming token counter."""

import json
import re
from typing import Any, Dict, Iterable, Optional

import tiktoken

from .logger import get_logger

_log = get_logger(__name__)

DEFAULT_ENCODING = "cl100k_base"
_encoder_cache: Dict[str, Any] = {}
_CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")


def _get_encoder(model: Optional[str] = None):
    """Return a cached tiktoken encoder, or None when none can be loaded."""
    key = model or DEFAULT_ENCODING
    if key in _encoder_cache:
        return _encoder_cache[key]

    try:
        try:
            enc = tiktoken.encoding_for_model(model) if model else tiktoken.get_encoding(DEFAULT_ENCODING)
        except KeyError:
            # Groq/Llama model ids are unknown to tiktoken.
            enc = tiktoken.get_encoding(DEFAULT_ENCODING)
    except Exception as e:
        # Encodings are downloaded on first use; offline hosts end up here.
        _log.debug("tiktoken encoder unavailable: %s", e)
        enc = None

    _encoder_cache[key] = enc
    return enc


def estimate_tokens(text: str, model: Optional[str] = None) -> int:
    if not text:
        return 0
    enc = _get_encoder(model)
    if enc is not None:
        return len(enc.encode(text, disallowed_special=()))
    return _heuristic_estimate(text)


def _heuristic_estimate(text: str) -> int:
    cjk_chars = len(_CJK_RE.findall(text))
    non_cjk = _CJK_RE.sub(" ", text)
    return max(1, int(len(non_cjk) / 4 + cjk_chars / 1.5))


def estimate_message_tokens(msg: Dict[str, Any], model: Optional[str] = None) -> int:
    tokens = 4  # per-message overhead
    tokens += estimate_tokens(msg.get("content") or "", model)
    if msg.get("tool_calls"):
        tokens += estimate_tokens(json.dumps(msg["tool_calls"], ensure_ascii=False), model)
    return tokens


def estimate_conversation_tokens(messages: Iterable[Dict[str, Any]], model: Optional[str] = None) -> int:
    return sum(estimate_message_tokens(m, model) for m in messages)
