from .registry import ToolRegistry
from .shell import ShellExecutor
from .file_ops import FileOps, FileOperationError
from .todo import TodoTool
from .web_ops import WebOps

__all__ = ["ToolRegistry", "ShellExecutor", "FileOps", "FileOperationError", "TodoTool", "WebOps"]
