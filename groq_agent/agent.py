"""Core agent loop: model call, tool calls, tool results, repeat.

Two entry points share one state machine. ``process_user_message`` returns the
turn's chat entries; ``process_user_message_stream`` yields typed chunks as
the model streams. The agent has no UI dependency: confirmations go through
``ConfirmationService`` and everything else is returned or yielded.
"""

import json
import threading
from typing import Any, Dict, Generator, List, Optional

from .accumulator import StreamAccumulator, build_message_rules
from .confirmation import ConfirmationService
from .errors import SessionError
from .extractor import ToolCallExtractor
from .logger import get_logger
from .messages import (
    ChatEntry, StreamingChunk, ToolCall, ToolResult,
    assistant_message, tool_message, user_message,
)
from .personality import build_system_prompt, load_custom_instructions, load_personality
from .session import Session, SessionManager
from .tokenizer import estimate_conversation_tokens, estimate_tokens
from .tools import ToolRegistry

_log = get_logger(__name__)

__all__ = ["Agent", "CANCELLED_NOTICE"]

CANCELLED_NOTICE = "[Operation cancelled by user]"
TOOL_USE_PLACEHOLDER = "Using tools to help you..."
EMPTY_ANSWER = "I understand, but I don't have a specific response."


def _round_limit_notice(rounds: int) -> str:
    return (f"Reached maximum tool execution rounds ({rounds}). "
            "Stopping to prevent an endless tool loop.")


def parse_tool_arguments(raw: str) -> Dict[str, Any]:
    """Decode a call's argument string, trimming trailing junk after the last ``}``.

    Raises ``ValueError`` with the original decode error when both attempts fail.
    """
    text = (raw or "").strip() or "{}"
    try:
        args = json.loads(text)
    except json.JSONDecodeError as first:
        last = text.rfind("}")
        if last == -1 or last == len(text) - 1:
            raise ValueError(str(first))
        try:
            args = json.loads(text[:last + 1])
        except json.JSONDecodeError:
            raise ValueError(str(first))
    if not isinstance(args, dict):
        raise ValueError("arguments must be a JSON object")
    return args


class _MarkupFilter:
    """Hides inline call markup from streamed text for the rest of a round.

    A delta ending in a prefix of ``<function`` (``"<"``, ``"<fun"``...) is held
    back until the next delta shows whether the tag follows.
    """

    TAG = "<function"

    def __init__(self):
        self.withholding = False
        self._held = ""

    def feed(self, piece: str) -> str:
        if self.withholding:
            return ""
        text, self._held = self._held + piece, ""
        start = text.find(self.TAG)
        if start >= 0:
            self.withholding = True
            return text[:start]
        if "</function>" in text:
            return ""
        for size in range(min(len(text), len(self.TAG) - 1), 0, -1):
            if self.TAG.startswith(text[-size:]):
                self._held = text[-size:]
                return text[:-size]
        return text

    def flush(self) -> str:
        held, self._held = self._held, ""
        return "" if self.withholding else held


class Agent:

    def __init__(self, client, tools: ToolRegistry,
                 confirmation: Optional[ConfirmationService] = None,
                 session_manager: Optional[SessionManager] = None,
                 max_tool_rounds: int = 10, max_stream_tool_rounds: int = 30,
                 simple_mode: bool = False, argument_mode: str = "replace",
                 extractor: Optional[ToolCallExtractor] = None,
                 instructions: Optional[str] = None,
                 personality: Optional[Dict[str, Any]] = None):
        self.client = client
        self.tools = tools
        self.confirmation = confirmation
        self.session_manager = session_manager
        self.max_tool_rounds = max_tool_rounds
        self.max_stream_tool_rounds = max_stream_tool_rounds
        self.simple_mode = simple_mode
        self.extractor = extractor or ToolCallExtractor(tool_names=tools.names)
        self._rules = build_message_rules(argument_mode)
        self._cancel = threading.Event()
        self.instructions = instructions
        self.personality = personality

        system = build_system_prompt(self.get_current_directory(), instructions, personality)
        self.messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        self.chat_history: List[ChatEntry] = []

    # ── state helpers ──

    def _append(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)
        manager = self.session_manager
        if manager is not None and manager.current is not None:
            try:
                manager.add_message(message)
            except (OSError, SessionError) as e:
                _log.warning("Could not persist message: %s", e)

    def _record(self, entry: ChatEntry, new_entries: Optional[List[ChatEntry]] = None) -> ChatEntry:
        self.chat_history.append(entry)
        if new_entries is not None:
            new_entries.append(entry)
        return entry

    def _tool_schemas(self) -> Optional[List[dict]]:
        return None if self.simple_mode else self.tools.schemas

    def _declare_tool_calls(self, content: str, calls: List[ToolCall],
                            new_entries: Optional[List[ChatEntry]] = None) -> None:
        self._record(ChatEntry(type="assistant", content=content or TOOL_USE_PLACEHOLDER,
                               tool_calls=calls), new_entries)
        self._append(assistant_message(content, calls))

    def _finish_answer(self, content: str,
                       new_entries: Optional[List[ChatEntry]] = None) -> None:
        self._record(ChatEntry(type="assistant", content=content or EMPTY_ANSWER), new_entries)
        self._append(assistant_message(content))

    def _run_tool(self, call: ToolCall,
                  new_entries: Optional[List[ChatEntry]] = None) -> ToolResult:
        result = self.execute_tool(call)
        self._record(ChatEntry(type="tool_result", content=result.display_content(),
                               tool_call=call, tool_result=result), new_entries)
        self._append(tool_message(call, result))
        return result

    def _error_entry(self, error: Exception,
                     new_entries: Optional[List[ChatEntry]] = None) -> ChatEntry:
        _log.error("Turn aborted: %s", error)
        return self._record(
            ChatEntry(type="assistant", content=f"Sorry, I encountered an error: {error}"),
            new_entries,
        )

    # ── tools ──

    def execute_tool(self, call: ToolCall) -> ToolResult:
        try:
            args = parse_tool_arguments(call.arguments)
        except ValueError as e:
            _log.info("Bad arguments for %s: %r", call.name, call.arguments[:200])
            return ToolResult.fail(f"Invalid JSON in tool arguments: {e}")
        result = self.tools.execute(call.name, args)
        if not result.success:
            _log.info("Tool %s failed: %s", call.name, result.error)
        return result

    # ── non-streaming turn ──

    def process_user_message(self, text: str) -> List[ChatEntry]:
        """Run one turn and return every entry it produced, starting with the user's."""
        new_entries: List[ChatEntry] = []
        self._record(ChatEntry(type="user", content=text), new_entries)
        self._append(user_message(text))

        rounds = 0
        try:
            response = self.client.chat(self.messages, self._tool_schemas())
            while True:
                calls, content = self.extractor.split(response)
                if not calls:
                    self._finish_answer(content, new_entries)
                    break

                rounds += 1
                _log.debug("Tool round %d: %s", rounds, ", ".join(c.name for c in calls))
                self._declare_tool_calls(content, calls, new_entries)
                for call in calls:
                    self._run_tool(call, new_entries)

                if rounds >= self.max_tool_rounds:
                    _log.warning("Round limit %d reached", rounds)
                    self._record(ChatEntry(type="assistant",
                                           content=_round_limit_notice(rounds)), new_entries)
                    break
                response = self.client.chat(self.messages, self._tool_schemas())
        except Exception as e:
            self._error_entry(e, new_entries)
        return new_entries

    # ── streaming turn ──

    def _cancelled(self) -> Generator[StreamingChunk, None, None]:
        _log.warning("Turn cancelled by user")
        self._record(ChatEntry(type="assistant", content=CANCELLED_NOTICE))
        yield StreamingChunk(type="content", content=f"\n\n{CANCELLED_NOTICE}")
        yield StreamingChunk(type="done")

    def process_user_message_stream(self, text: str) -> Generator[StreamingChunk, None, None]:
        self._cancel.clear()
        self._record(ChatEntry(type="user", content=text))
        self._append(user_message(text))

        model = getattr(self.client, "current_model", None)
        input_tokens = estimate_conversation_tokens(self.messages, model)
        yield StreamingChunk(type="token_count", token_count=input_tokens)

        rounds = 0
        while True:
            if self._cancel.is_set():
                yield from self._cancelled()
                return

            acc = StreamAccumulator(self._rules)
            announced = False
            markup = _MarkupFilter()
            visible = ""
            try:
                for delta in self.client.chat_stream(self.messages, self._tool_schemas()):
                    if self._cancel.is_set():
                        yield from self._cancelled()
                        return
                    acc.add(delta)

                    if not announced and acc.has_named_tool_call():
                        announced = True
                        yield StreamingChunk(type="tool_calls", tool_calls=acc.tool_calls())

                    piece = delta.get("content") if isinstance(delta, dict) else None
                    if not isinstance(piece, str) or not piece:
                        continue
                    piece = markup.feed(piece)
                    if piece:
                        visible += piece
                        yield StreamingChunk(type="content", content=piece)
                    yield StreamingChunk(
                        type="token_count",
                        token_count=input_tokens + estimate_tokens(visible, model),
                    )
                tail = markup.flush()
                if tail:
                    visible += tail
                    yield StreamingChunk(type="content", content=tail)
            except Exception as e:
                if self._cancel.is_set():
                    yield from self._cancelled()
                    return
                entry = self._error_entry(e)
                yield StreamingChunk(type="content", content=entry.content)
                yield StreamingChunk(type="done")
                return

            calls, content = self.extractor.split(acc.message())
            if not calls:
                self._finish_answer(content)
                break

            rounds += 1
            _log.debug("Stream tool round %d: %s", rounds, ", ".join(c.name for c in calls))
            if not announced:
                yield StreamingChunk(type="tool_calls", tool_calls=calls)
            self._declare_tool_calls(content, calls)

            for call in calls:
                if self._cancel.is_set():
                    yield from self._cancelled()
                    return
                result = self._run_tool(call)
                yield StreamingChunk(type="tool_result", tool_call=call, tool_result=result)

            if rounds >= self.max_stream_tool_rounds:
                _log.warning("Stream round limit %d reached", rounds)
                notice = _round_limit_notice(rounds)
                self._record(ChatEntry(type="assistant", content=notice))
                yield StreamingChunk(type="content", content=f"\n\n{notice}")
                break

        yield StreamingChunk(type="done")

    def cancel(self) -> None:
        """Ask the running streaming turn to stop at its next checkpoint."""
        self._cancel.set()
        if self.confirmation is not None:
            self.confirmation.reject_pending()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ── sessions & instructions ──

    def load_session(self, session: Session) -> None:
        """Replace the conversation with a saved one, keeping the current system message."""
        restored = [m for m in session.messages if isinstance(m, dict) and m.get("role") != "system"]
        self.messages = [self.messages[0]] + restored
        self.chat_history = self._entries_from_messages(restored)

    @staticmethod
    def _entries_from_messages(messages: List[Dict[str, Any]]) -> List[ChatEntry]:
        entries: List[ChatEntry] = []
        declared: Dict[str, ToolCall] = {}
        for msg in messages:
            role = msg.get("role")
            content = msg.get("content") or ""
            if role == "user":
                entries.append(ChatEntry(type="user", content=content))
            elif role == "assistant":
                calls = [ToolCall.from_wire(tc) for tc in msg.get("tool_calls") or []
                         if isinstance(tc, dict)]
                for call in calls:
                    declared[call.id] = call
                entries.append(ChatEntry(
                    type="assistant",
                    content=content or (TOOL_USE_PLACEHOLDER if calls else ""),
                    tool_calls=calls or None,
                ))
            elif role == "tool":
                call_id = str(msg.get("tool_call_id") or "")
                call = declared.get(call_id) or ToolCall(id=call_id, name=str(msg.get("name") or ""))
                # Saved tool messages do not record success; show them as plain output.
                entries.append(ChatEntry(type="tool_result", content=content, tool_call=call,
                                         tool_result=ToolResult.ok(content)))
        return entries

    def reload_instructions(self) -> None:
        cwd = self.get_current_directory()
        self.instructions = load_custom_instructions(cwd)
        self.personality = load_personality(cwd)
        self.messages[0] = {
            "role": "system",
            "content": build_system_prompt(cwd, self.instructions, self.personality),
        }

    # ── utilities ──

    def set_model(self, model: str) -> None:
        self.client.set_model(model)

    def get_current_model(self) -> str:
        return self.client.current_model

    def get_current_directory(self) -> str:
        return self.tools.get_current_directory()

    def get_chat_history(self) -> List[ChatEntry]:
        return list(self.chat_history)

    def set_simple_mode(self, enabled: bool) -> None:
        self.simple_mode = bool(enabled)

    def set_argument_mode(self, mode: str) -> None:
        """Choose how streamed tool-call arguments merge: "replace" or "append"."""
        self._rules = build_message_rules(mode)

    def clear(self) -> None:
        self.messages = self.messages[:1]
        self.chat_history = []
