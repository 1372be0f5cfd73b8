"""Recover tool calls from assistant messages, including malformed inline ones.

Llama-family models on Groq sometimes write a call into the text instead of the
structured ``tool_calls`` field, e.g.::

    <function=bash {"command": "ls -la"}>
    functions.view_file({"path": "README.md"})
    web_search({'query': 'python 3.13 release',})

The strategies below are tried in order and the first match wins. Arguments
get one round of textual repair before the call is given up on.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .logger import get_logger
from .messages import ToolCall

_log = get_logger(__name__)

TOOL_NAMES = (
    "view_file",
    "create_file",
    "str_replace_editor",
    "bash",
    "create_todo_list",
    "update_todo_list",
    "web_fetch",
    "web_search",
)

NAME_ALIASES = {
    "search": "web_search",
    "websearch": "web_search",
    "search_web": "web_search",
    "google": "web_search",
    "fetch": "web_fetch",
    "webfetch": "web_fetch",
    "fetch_url": "web_fetch",
    "browse": "web_fetch",
    "view": "view_file",
    "read": "view_file",
    "read_file": "view_file",
    "cat": "view_file",
    "open_file": "view_file",
    "create": "create_file",
    "write": "create_file",
    "write_file": "create_file",
    "new_file": "create_file",
    "edit": "str_replace_editor",
    "edit_file": "str_replace_editor",
    "replace": "str_replace_editor",
    "str_replace": "str_replace_editor",
    "str_replace_based_edit_tool": "str_replace_editor",
    "shell": "bash",
    "sh": "bash",
    "run": "bash",
    "exec": "bash",
    "execute": "bash",
    "terminal": "bash",
    "run_command": "bash",
    "execute_command": "bash",
    "todo": "create_todo_list",
    "todos": "create_todo_list",
    "create_todo": "create_todo_list",
    "todo_list": "create_todo_list",
    "update_todo": "update_todo_list",
    "update_todos": "update_todo_list",
}

_FUNCTION_BLOCK_RE = re.compile(r"<function[^>]*>.*?</function>", re.DOTALL)
_FUNCTION_TAG_RE = re.compile(r"</?function[^>]*>")
_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)(\s*:)")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class Strategy:
    """One inline-call shape: ``pattern`` must end right before the ``{``."""
    name: str
    pattern: re.Pattern
    known_names_only: bool = False


STRATEGIES: Tuple[Strategy, ...] = (
    Strategy(
        "pseudo_tag",
        re.compile(
            r"<function(?:=|\s+name\s*=\s*[\"']?)(?P<name>[\w.\-]+)[\"']?\s*>?\s*(?=\{)"
        ),
    ),
    Strategy(
        "dotted",
        re.compile(r"\b(?:functions|tools)\.(?P<name>[A-Za-z_]\w*)\s*(?:\(\s*|:\s*)?(?=\{)"),
    ),
    Strategy(
        "parenthesized",
        re.compile(r"\b(?P<name>[A-Za-z_]\w*)\s*\(\s*(?=\{)"),
        known_names_only=True,
    ),
)


@dataclass
class Recovered:
    call: ToolCall
    strategy: str
    span: Tuple[int, int]


def normalize_name(name: str) -> str:
    key = name.strip().lower().replace("-", "_")
    for prefix in ("functions.", "tools."):
        if key.startswith(prefix):
            key = key[len(prefix):]
    return NAME_ALIASES.get(key, key)


def clean_content(text: str) -> str:
    """Remove ``<function ...>`` markup the model leaked into its answer."""
    if not text or "<function" not in text and "</function" not in text:
        return text or ""
    cleaned = _FUNCTION_BLOCK_RE.sub("", text)
    cleaned = _FUNCTION_TAG_RE.sub("", cleaned)
    return _BLANK_RUN_RE.sub("\n\n", cleaned).strip()


# ── argument repair ──

def _scan_blob(text: str, start: int) -> Tuple[str, int]:
    """Return the brace-balanced object starting at ``start`` and its end.

    When the braces never balance, the rest of the text (cut at a closing
    ``</function>``) is returned so repair can try to close it.
    """
    depth = 0
    quote = ""
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = ""
            continue
        if char in "\"'":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:pos + 1], pos + 1

    end = text.find("</function>", start)
    if end < 0:
        end = len(text)
    blob = text[start:end].rstrip().rstrip(">)").rstrip()
    return blob, end


def _convert_single_quotes(text: str) -> str:
    out: List[str] = []
    pos = 0
    in_double = False
    while pos < len(text):
        char = text[pos]
        if in_double:
            out.append(char)
            if char == "\\" and pos + 1 < len(text):
                out.append(text[pos + 1])
                pos += 1
            elif char == '"':
                in_double = False
            pos += 1
            continue
        if char == '"':
            in_double = True
            out.append(char)
            pos += 1
            continue
        if char == "'":
            end = pos + 1
            buf: List[str] = []
            while end < len(text) and text[end] != "'":
                if text[end] == "\\" and end + 1 < len(text):
                    buf.append(text[end + 1])
                    end += 2
                    continue
                buf.append(text[end])
                end += 1
            if end >= len(text):
                out.append(text[pos:])
                break
            out.append(json.dumps("".join(buf), ensure_ascii=False))
            pos = end + 1
            continue
        out.append(char)
        pos += 1
    return "".join(out)


def _close_open_brackets(text: str) -> str:
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()
    if in_string:
        return text
    return text + "".join(reversed(stack))


def _trim_after_last_brace(text: str) -> str:
    last = text.rfind("}")
    if last < 0 or last == len(text) - 1:
        return text
    head = text[:last + 1]
    if head.count("{") == head.count("}"):
        return head
    return text


def repair_json(blob: str) -> str:
    text = blob.strip()
    text = _trim_after_last_brace(text)
    text = _convert_single_quotes(text)
    text = _BARE_KEY_RE.sub(r'\1"\2"\3', text)
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return _close_open_brackets(text)


def parse_arguments(blob: str) -> Optional[Dict[str, Any]]:
    """Strict parse, then one repaired retry. Returns None when both fail."""
    try:
        value = json.loads(blob)
    except ValueError:
        try:
            value = json.loads(repair_json(blob))
        except ValueError:
            return None
    return value if isinstance(value, dict) else None


# ── extractor ──

class ToolCallExtractor:
    """Turn an assistant message into tool calls.

    Structured ``tool_calls`` are trusted as-is. Otherwise the text is searched
    with ``strategies``; only the first match is used.
    """

    def __init__(self, tool_names: Iterable[str] = TOOL_NAMES,
                 strategies: Iterable[Strategy] = STRATEGIES):
        self.tool_names = set(tool_names)
        self.strategies = tuple(strategies)

    def extract(self, message: Dict[str, Any]) -> Optional[List[ToolCall]]:
        calls, _ = self.split(message)
        return calls

    def split(self, message: Dict[str, Any]) -> Tuple[Optional[List[ToolCall]], str]:
        """Return ``(tool_calls or None, display content)`` for a message."""
        content = message.get("content") if isinstance(message, dict) else None
        content = content if isinstance(content, str) else ""

        structured = self._structured(message)
        if structured:
            return structured, clean_content(content)

        found = self.recover(content)
        if found is None:
            return None, clean_content(content)

        start, end = found.span
        remaining = (content[:start] + content[end:]).strip()
        return [found.call], clean_content(remaining)

    @staticmethod
    def _structured(message: Dict[str, Any]) -> Optional[List[ToolCall]]:
        raw = message.get("tool_calls") if isinstance(message, dict) else None
        if not isinstance(raw, list):
            return None
        wire = [tc for tc in raw if isinstance(tc, dict)]
        named = any(
            isinstance(tc.get("function"), dict) and tc["function"].get("name")
            for tc in wire
        )
        if not named:
            return None
        return [ToolCall.from_wire(tc) for tc in wire]

    def recover(self, text: str) -> Optional[Recovered]:
        if not text or "{" not in text:
            return None

        # Blank out fenced code so examples in the answer are not executed.
        searchable = _CODE_FENCE_RE.sub(lambda m: " " * len(m.group(0)), text)

        for strategy in self.strategies:
            match = self._first_match(strategy, searchable)
            if match is None:
                continue

            name = normalize_name(match.group("name"))
            blob, end = _scan_blob(text, match.end())
            arguments = parse_arguments(blob)
            if arguments is None:
                _log.info("Dropping unparseable inline %s call to %s", strategy.name, name)
                return None

            end = self._consume_closer(text, end)
            call = ToolCall(
                id=f"call_{uuid.uuid4().hex}",
                name=name,
                arguments=json.dumps(arguments, ensure_ascii=False),
            )
            _log.debug("Recovered inline tool call %s via %s", name, strategy.name)
            return Recovered(call=call, strategy=strategy.name, span=(match.start(), end))
        return None

    def _first_match(self, strategy: Strategy, text: str) -> Optional[re.Match]:
        for match in strategy.pattern.finditer(text):
            if not strategy.known_names_only:
                return match
            if normalize_name(match.group("name")) in self.tool_names:
                return match
        return None

    @staticmethod
    def _consume_closer(text: str, end: int) -> int:
        rest = text[end:]
        stripped = rest.lstrip()
        for closer in ("</function>", ")", ">"):
            if stripped.startswith(closer):
                return end + (len(rest) - len(stripped)) + len(closer)
        return end
