"""In-memory todo list the model uses to plan multi-step work."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..errors import ToolError

STATUS_ICONS = {"pending": "⏳", "in_progress": "🔄", "completed": "✅"}
PRIORITY_ICONS = {"high": "🔴", "medium": "🟡", "low": "🟢"}


@dataclass
class TodoItem:
    id: str
    content: str
    status: str = "pending"
    priority: str = "medium"

    def render(self) -> str:
        return (f"{STATUS_ICONS[self.status]} {PRIORITY_ICONS[self.priority]} "
                f"[{self.id}] {self.content}")


class TodoTool:

    def __init__(self):
        self._todos: Optional[List[TodoItem]] = None

    def get_current_todos(self) -> List[Dict[str, Any]]:
        return [asdict(t) for t in (self._todos or [])]

    @staticmethod
    def _check_status(tool: str, status: Any) -> str:
        if status not in STATUS_ICONS:
            raise ToolError(tool, f"Invalid status: {status}. Use one of: {', '.join(STATUS_ICONS)}")
        return status

    @staticmethod
    def _check_priority(tool: str, priority: Any) -> str:
        if priority not in PRIORITY_ICONS:
            raise ToolError(tool, f"Invalid priority: {priority}. Use one of: {', '.join(PRIORITY_ICONS)}")
        return priority

    def _parse_item(self, raw: Any) -> TodoItem:
        tool = "create_todo_list"
        if not isinstance(raw, dict):
            raise ToolError(tool, f"Invalid todo item: {raw!r}")
        todo_id = str(raw.get("id") or "").strip()
        content = str(raw.get("content") or "").strip()
        if not todo_id or not content:
            raise ToolError(tool, f"Invalid todo item: id and content are required ({raw!r})")
        return TodoItem(
            id=todo_id,
            content=content,
            status=self._check_status(tool, raw.get("status", "pending")),
            priority=self._check_priority(tool, raw.get("priority", "medium")),
        )

    def create(self, todos: List[Dict[str, Any]]) -> str:
        if not isinstance(todos, list):
            raise ToolError("create_todo_list", "Invalid todo item: todos must be a list")
        items = [self._parse_item(raw) for raw in todos]
        self._todos = items
        return self._render("TODO List created")

    def update(self, updates: List[Dict[str, Any]]) -> str:
        tool = "update_todo_list"
        if self._todos is None:
            raise ToolError(tool, "No existing todo list. Create one with create_todo_list first.")
        if not isinstance(updates, list):
            raise ToolError(tool, "Invalid todo item: updates must be a list")

        by_id = {t.id: t for t in self._todos}
        # Validate everything first so a bad update leaves the list untouched.
        staged = []
        for upd in updates:
            if not isinstance(upd, dict):
                raise ToolError(tool, f"Invalid todo item: {upd!r}")
            todo_id = str(upd.get("id") or "")
            if todo_id not in by_id:
                raise ToolError(tool, f"Todo with id {todo_id} not found")
            if "status" in upd:
                self._check_status(tool, upd["status"])
            if "priority" in upd:
                self._check_priority(tool, upd["priority"])
            staged.append((by_id[todo_id], upd))

        for item, upd in staged:
            if "status" in upd:
                item.status = upd["status"]
            if "priority" in upd:
                item.priority = upd["priority"]
            if upd.get("content"):
                item.content = str(upd["content"])
        return self._render("TODO List updated")

    def _render(self, title: str) -> str:
        todos = self._todos or []
        lines = [f"{title}:"]
        if not todos:
            lines.append("  (no items)")
        lines.extend(f"  {t.render()}" for t in todos)
        done = sum(1 for t in todos if t.status == "completed")
        lines.append(f"\nProgress: {done}/{len(todos)} completed")
        return "\n".join(lines)
