"""Tool registry: one table holding each tool's schema and handler."""

from typing import Any, Callable, Dict, List, Optional

from ..confirmation import ConfirmationService
from ..errors import ToolError
from ..logger import get_logger
from ..messages import ToolResult
from .file_ops import FileOps
from .shell import ShellExecutor
from .todo import TodoTool
from .web_ops import WebOps

_log = get_logger(__name__)


class _ToolEntry:
    __slots__ = ("handler", "schema")

    def __init__(self, handler: Callable[..., str], schema: dict):
        self.handler = handler
        self.schema = schema


def _schema(name: str, description: str, properties: dict, required: list) -> dict:
    """Build an OpenAI-compatible function schema."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_S = lambda desc, **kw: {"type": "string", "description": desc, **kw}
_I = lambda desc, **kw: {"type": "integer", "description": desc, **kw}

_TODO_ITEM = {
    "type": "object",
    "properties": {
        "id": _S("Unique identifier"),
        "content": _S("Task description"),
        "status": _S("Task status", enum=["pending", "in_progress", "completed"]),
        "priority": _S("Task priority", enum=["high", "medium", "low"]),
    },
    "required": ["id", "content", "status", "priority"],
}
_TODO_UPDATE = {
    "type": "object",
    "properties": {
        "id": _S("Id of the todo to update"),
        "status": _S("New status", enum=["pending", "in_progress", "completed"]),
        "content": _S("New description"),
        "priority": _S("New priority", enum=["high", "medium", "low"]),
    },
    "required": ["id"],
}


class ToolRegistry:

    def __init__(self, cwd: Optional[str] = None, blocked_commands: Optional[list] = None,
                 command_timeout: int = 30, tavily_api_key: Optional[str] = None,
                 confirmation: Optional[ConfirmationService] = None):
        self.shell = ShellExecutor(cwd, blocked_commands, command_timeout, confirmation)
        self.file_ops = FileOps(self.shell.get_current_directory, confirmation)
        self.todo = TodoTool()
        self.web = WebOps(tavily_api_key=tavily_api_key)
        self._tools: Dict[str, _ToolEntry] = {}
        self._register_tools()

    def _register_tools(self):
        f = self.file_ops
        T = _ToolEntry
        S = _schema

        self._tools["view_file"] = T(
            handler=lambda **a: f.view(a["path"], a.get("start_line"), a.get("end_line")),
            schema=S("view_file",
                     "View file contents with line numbers, or list a directory.",
                     {"path": _S("Path to file or directory"),
                      "start_line": _I("Start line (1-indexed, optional)"),
                      "end_line": _I("End line (inclusive, optional)")},
                     ["path"]),
        )
        self._tools["create_file"] = T(
            handler=lambda **a: f.create_file(a["path"], a["content"]),
            schema=S("create_file", "Create a new file with content. Fails if the file exists.",
                     {"path": _S("Path of the file to create"),
                      "content": _S("Full file content")},
                     ["path", "content"]),
        )
        self._tools["str_replace_editor"] = T(
            handler=lambda **a: f.str_replace(a["path"], a["old_str"], a["new_str"]),
            schema=S("str_replace_editor",
                     "Replace text in an existing file. old_str must appear exactly once.",
                     {"path": _S("Path of the file to edit"),
                      "old_str": _S("Exact text to replace (must be unique)"),
                      "new_str": _S("Replacement text")},
                     ["path", "old_str", "new_str"]),
        )
        self._tools["bash"] = T(
            handler=lambda **a: self.shell.execute(a["command"]),
            schema=S("bash", "Execute a bash command. `cd DIR` changes the working directory.",
                     {"command": _S("The bash command to execute")},
                     ["command"]),
        )
        self._tools["create_todo_list"] = T(
            handler=lambda **a: self.todo.create(a["todos"]),
            schema=S("create_todo_list", "Create a todo list to plan and track a multi-step task.",
                     {"todos": {"type": "array", "description": "Todo items", "items": _TODO_ITEM}},
                     ["todos"]),
        )
        self._tools["update_todo_list"] = T(
            handler=lambda **a: self.todo.update(a["updates"]),
            schema=S("update_todo_list", "Update status, content or priority of existing todos.",
                     {"updates": {"type": "array", "description": "Todo updates", "items": _TODO_UPDATE}},
                     ["updates"]),
        )
        self._tools["web_fetch"] = T(
            handler=lambda **a: self.web.fetch(a["url"]),
            schema=S("web_fetch", "Fetch a web page or API response over HTTP(S).",
                     {"url": _S("URL to fetch (http/https)")},
                     ["url"]),
        )
        self._tools["web_search"] = T(
            handler=lambda **a: self.web.search(a["query"], a.get("limit", 5)),
            schema=S("web_search", "Search the web and return titles, URLs and snippets.",
                     {"query": _S("Search query"),
                      "limit": _I("Max results (default 5)", default=5)},
                     ["query"]),
        )

    # ── Public API ──

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    @property
    def schemas(self) -> List[dict]:
        return [entry.schema for entry in self._tools.values()]

    def get_current_directory(self) -> str:
        return self.shell.get_current_directory()

    def execute(self, tool_name: str, arguments: Dict[str, Any]) -> ToolResult:
        """Dispatch a call by name. Never raises; failures come back as ToolResult."""
        entry = self._tools.get(tool_name)
        if not entry:
            return ToolResult.fail(f"Unknown tool: {tool_name}")
        if not isinstance(arguments, dict):
            return ToolResult.fail(f"Invalid arguments for {tool_name}: expected an object")

        try:
            return ToolResult.ok(entry.handler(**arguments))
        except ToolError as e:
            _log.info("%s failed: %s", tool_name, e.message)
            return ToolResult.fail(e.message)
        except KeyError as e:
            return ToolResult.fail(f"Missing argument: {e}")
        except TypeError as e:
            return ToolResult.fail(f"Invalid arguments for {tool_name}: {e}")
        except Exception as e:
            _log.warning("%s raised %s", tool_name, type(e).__name__, exc_info=True)
            return ToolResult.fail(f"{tool_name} error: {type(e).__name__}: {e}")
