"""Fold streamed chat-completion deltas into one assistant message.

Each delta is a sparse dict in the chat-completions wire shape, e.g.::

    {"role": "assistant", "content": "Hel"}
    {"content": "lo"}
    {"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "bash"}}]}
    {"tool_calls": [{"index": 0, "function": {"arguments": "{\"command\": \"ls\"}"}}]}

How a field merges is looked up in a rule table, never guessed from the value
at merge time. Fields not in the table fall back to a rule chosen by the shape
of the first value seen (text appends, objects and lists recurse, anything else
replaces).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .logger import get_logger
from .messages import ToolCall

_log = get_logger(__name__)

INDEX_KEY = "index"
# Largest forward jump an `index` may make past the current end of a list.
MAX_SLOT_GAP = 64


class FieldKind(Enum):
    APPEND = "append"
    REPLACE = "replace"
    LIST = "list"
    OBJECT = "object"


@dataclass(frozen=True)
class FieldRule:
    kind: FieldKind
    children: Optional[Dict[str, "FieldRule"]] = None


_APPEND = FieldRule(FieldKind.APPEND)
_REPLACE = FieldRule(FieldKind.REPLACE)


def build_message_rules(argument_mode: str = "replace") -> Dict[str, FieldRule]:
    """Return the rule table for an assistant message.

    Tool-call ``name`` and ``arguments`` replace by default because the Groq
    endpoint resends the full string with every chunk. ``argument_mode="append"``
    switches ``arguments`` to concatenation for providers that stream true
    fragments.
    """
    function_rules = {
        "name": _REPLACE,
        "arguments": _APPEND if argument_mode == "append" else _REPLACE,
    }
    tool_call_rules = {
        "id": _REPLACE,
        "type": _REPLACE,
        "function": FieldRule(FieldKind.OBJECT, function_rules),
    }
    return {
        "role": _REPLACE,
        "content": _APPEND,
        "reasoning_content": _APPEND,
        "tool_calls": FieldRule(FieldKind.LIST, tool_call_rules),
    }


MESSAGE_RULES = build_message_rules()


def _infer_rule(value: Any) -> FieldRule:
    if isinstance(value, str):
        return _APPEND
    if isinstance(value, dict):
        return FieldRule(FieldKind.OBJECT, {})
    if isinstance(value, list):
        return FieldRule(FieldKind.LIST, {})
    return _REPLACE


def _strip_index(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_index(v) for k, v in value.items() if k != INDEX_KEY}
    if isinstance(value, list):
        return [_strip_index(item) for item in value]
    return value


class StreamAccumulator:
    """Mutable partial message built from deltas; call ``message()`` at the end."""

    def __init__(self, rules: Optional[Dict[str, FieldRule]] = None):
        self.rules = rules if rules is not None else MESSAGE_RULES
        self._state: Dict[str, Any] = {}
        self.delta_count = 0

    def add(self, delta: Any) -> None:
        if not isinstance(delta, dict):
            _log.debug("Skipping non-object delta: %r", type(delta).__name__)
            return
        self.delta_count += 1
        self._merge_object(self._state, delta, self.rules)

    # ── merge ──

    def _merge_object(self, target: Dict[str, Any], delta: Dict[str, Any],
                      rules: Dict[str, FieldRule]) -> None:
        for key, value in delta.items():
            if key == INDEX_KEY or value is None:
                continue
            existing = target.get(key)
            rule = rules.get(key) or _infer_rule(value if existing is None else existing)
            self._merge_field(target, key, value, rule)

    def _merge_field(self, target: Dict[str, Any], key: str, value: Any,
                     rule: FieldRule) -> None:
        existing = target.get(key)
        kind = rule.kind

        if kind is FieldKind.APPEND:
            if not isinstance(value, str):
                _log.debug("Skipping non-text value for %s", key)
                return
            if existing is None:
                target[key] = value
            elif isinstance(existing, str):
                target[key] = existing + value
            return

        if kind is FieldKind.REPLACE:
            if isinstance(value, (dict, list)):
                _log.debug("Skipping structured value for scalar field %s", key)
                return
            target[key] = value
            return

        if kind is FieldKind.OBJECT:
            if not isinstance(value, dict):
                _log.debug("Skipping non-object value for %s", key)
                return
            if not isinstance(existing, dict):
                existing = {}
                target[key] = existing
            self._merge_object(existing, value, rule.children or {})
            return

        if kind is FieldKind.LIST:
            if not isinstance(value, list):
                _log.debug("Skipping non-list value for %s", key)
                return
            if not isinstance(existing, list):
                existing = []
                target[key] = existing
            self._merge_list(existing, value, rule.children or {})

    def _merge_list(self, target: List[Any], items: List[Any],
                    rules: Dict[str, FieldRule]) -> None:
        for position, item in enumerate(items):
            slot = position
            if isinstance(item, dict):
                index = item.get(INDEX_KEY)
                if isinstance(index, int) and not isinstance(index, bool) and index >= 0:
                    slot = index
            if slot > len(target) + MAX_SLOT_GAP:
                _log.debug("Skipping list item with out-of-range index %d", slot)
                continue
            while len(target) <= slot:
                target.append(None)

            if isinstance(item, dict):
                if not isinstance(target[slot], dict):
                    target[slot] = {}
                self._merge_object(target[slot], item, rules)
            elif item is not None:
                target[slot] = _strip_index(item)

    # ── results ──

    def _live_tool_calls(self) -> List[Dict[str, Any]]:
        calls = self._state.get("tool_calls")
        if not isinstance(calls, list):
            return []
        return [tc for tc in calls if isinstance(tc, dict) and tc]

    def has_named_tool_call(self) -> bool:
        for tc in self._live_tool_calls():
            function = tc.get("function")
            if isinstance(function, dict) and function.get("name"):
                return True
        return False

    def tool_calls(self) -> List[ToolCall]:
        return [ToolCall.from_wire(tc) for tc in self._live_tool_calls()]

    @property
    def content(self) -> str:
        text = self._state.get("content")
        return text if isinstance(text, str) else ""

    def message(self) -> Dict[str, Any]:
        """Snapshot of the finished message with index bookkeeping removed."""
        result = _strip_index(copy.deepcopy(self._state))
        result.setdefault("role", "assistant")
        if not isinstance(result.get("content"), str):
            result["content"] = ""
        calls = [tc for tc in result.get("tool_calls") or [] if isinstance(tc, dict) and tc]
        if calls:
            result["tool_calls"] = calls
        else:
            result.pop("tool_calls", None)
        return result
