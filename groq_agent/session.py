"""Session persistence: one JSON file per conversation under ~/.groq/sessions."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .errors import SessionError
from .logger import get_logger

_log = get_logger(__name__)

TITLE_MAX_LENGTH = 50


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _parse_time(value: Any) -> datetime:
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return datetime.fromtimestamp(0)


def generate_title(messages: List[Dict[str, Any]]) -> str:
    """Title from the first user message, shortened to 50 characters."""
    first = next((m for m in messages if m.get("role") == "user"), None)
    if not first or not isinstance(first.get("content"), str):
        return "Untitled Session"
    content = first["content"]
    if len(content) <= TITLE_MAX_LENGTH:
        return content
    return content[:TITLE_MAX_LENGTH - 3] + "..."


@dataclass
class Session:
    id: str
    created_at: str
    updated_at: str
    working_directory: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": self.messages,
            "workingDirectory": self.working_directory,
        }
        if self.title:
            data["title"] = self.title
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise SessionError("session file has no message list")
        return cls(
            id=str(data["id"]),
            created_at=str(data.get("createdAt") or _now()),
            updated_at=str(data.get("updatedAt") or _now()),
            working_directory=str(data.get("workingDirectory") or ""),
            messages=messages,
            title=data.get("title"),
        )


@dataclass
class SessionMetadata:
    id: str
    created_at: str
    updated_at: str
    title: str
    message_count: int
    working_directory: str


class SessionManager:

    def __init__(self, sessions_dir: Optional[Path] = None):
        self.sessions_dir = Path(sessions_dir) if sessions_dir else config.CONFIG_DIR / "sessions"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.current: Optional[Session] = None

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    def create_session(self, working_directory: str) -> Session:
        now = _now()
        session = Session(id=str(uuid.uuid4()), created_at=now, updated_at=now,
                          working_directory=working_directory)
        self.save_session(session)
        self.current = session
        return session

    def save_session(self, session: Session) -> None:
        session.updated_at = _now()
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(session.id), "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, ensure_ascii=False, indent=2)

    def _read(self, path: Path) -> Session:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise SessionError(f"{path.name} is not a session object")
        return Session.from_dict(data)

    def load_session(self, session_id: str) -> Optional[Session]:
        """Load and activate a session; None when it is missing or unreadable."""
        try:
            session = self._read(self._path(session_id))
        except (OSError, ValueError, KeyError, SessionError) as e:
            _log.debug("Cannot load session %s: %s", session_id, e)
            return None
        self.current = session
        return session

    def list_sessions(self) -> List[SessionMetadata]:
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                s = self._read(path)
            except (OSError, ValueError, KeyError, SessionError):
                _log.debug("Skipping corrupt session file %s", path.name)
                continue
            sessions.append(SessionMetadata(
                id=s.id,
                created_at=s.created_at,
                updated_at=s.updated_at,
                title=s.title or generate_title(s.messages),
                message_count=len(s.messages),
                working_directory=s.working_directory,
            ))
        sessions.sort(key=lambda m: _parse_time(m.updated_at), reverse=True)
        return sessions

    def get_last_session(self) -> Optional[Session]:
        sessions = self.list_sessions()
        if not sessions:
            return None
        return self.load_session(sessions[0].id)

    def delete_session(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError:
            return False
        if self.current and self.current.id == session_id:
            self.current = None
        return True

    def delete_old_sessions(self, days: int = 30) -> int:
        cutoff = datetime.now() - timedelta(days=days)
        deleted = 0
        for meta in self.list_sessions():
            if _parse_time(meta.updated_at) < cutoff and self.delete_session(meta.id):
                deleted += 1
        return deleted

    def add_message(self, message: Dict[str, Any]) -> None:
        if self.current is None:
            raise SessionError("No active session")
        self.current.messages.append(message)
        self.save_session(self.current)

    def set_session_title(self, session_id: str, title: str) -> bool:
        session = self.load_session(session_id)
        if session is None:
            return False
        session.title = title
        self.save_session(session)
        return True
