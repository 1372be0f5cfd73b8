"""Approval of risky tool operations through message passing.

A tool that needs approval puts a ``ConfirmationRequest`` on
``ConfirmationService.requests`` and blocks on the request's private reply
queue. Whoever owns the terminal drains ``requests`` and answers. The agent
never talks to the UI directly.
"""

import queue
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from .logger import get_logger

_log = get_logger(__name__)

FILE_OPERATION = "file"
BASH_COMMAND = "bash"


@dataclass
class ConfirmationReply:
    confirmed: bool
    remember: bool = False
    feedback: Optional[str] = None


@dataclass
class ConfirmationRequest:
    operation: str
    target: str
    kind: str = FILE_OPERATION
    preview: str = ""
    reply: "queue.Queue[ConfirmationReply]" = field(
        default_factory=lambda: queue.Queue(maxsize=1), repr=False
    )

    def answer(self, confirmed: bool, remember: bool = False,
               feedback: Optional[str] = None) -> None:
        try:
            self.reply.put_nowait(ConfirmationReply(confirmed, remember, feedback))
        except queue.Full:
            pass


@dataclass
class SessionFlags:
    file_operations: bool = False
    bash_commands: bool = False
    all_operations: bool = False


class ConfirmationService:

    def __init__(self, auto_confirm: bool = False, timeout: Optional[float] = None):
        self.auto_confirm = auto_confirm
        self.requests: "queue.Queue[ConfirmationRequest]" = queue.Queue()
        self.flags = SessionFlags(all_operations=auto_confirm)
        self.timeout = timeout
        self._pending: List[ConfirmationRequest] = []
        self._lock = threading.Lock()

    def is_preapproved(self, kind: str) -> bool:
        if self.flags.all_operations:
            return True
        if kind == FILE_OPERATION:
            return self.flags.file_operations
        if kind == BASH_COMMAND:
            return self.flags.bash_commands
        return False

    def request(self, operation: str, target: str, kind: str = FILE_OPERATION,
                preview: str = "") -> ConfirmationReply:
        """Block until the presentation layer answers; unanswered means rejected."""
        if self.is_preapproved(kind):
            return ConfirmationReply(confirmed=True)

        req = ConfirmationRequest(operation=operation, target=target, kind=kind, preview=preview)
        with self._lock:
            self._pending.append(req)
        self.requests.put(req)
        try:
            reply = req.reply.get(timeout=self.timeout)
        except queue.Empty:
            _log.warning("Confirmation for %s timed out", operation)
            reply = ConfirmationReply(confirmed=False)
        finally:
            with self._lock:
                if req in self._pending:
                    self._pending.remove(req)

        if reply.confirmed and reply.remember:
            self.remember(kind)
        return reply

    def remember(self, kind: str) -> None:
        if kind == FILE_OPERATION:
            self.flags.file_operations = True
        elif kind == BASH_COMMAND:
            self.flags.bash_commands = True
        else:
            self.flags.all_operations = True

    def reject_pending(self) -> None:
        """Answer every outstanding request with a rejection (used on cancel)."""
        with self._lock:
            pending = list(self._pending)
        for req in pending:
            req.answer(False)

    def reset_session(self) -> None:
        self.flags = SessionFlags(all_operations=self.auto_confirm)
