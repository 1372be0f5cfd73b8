"""The bash tool: runs commands in a working directory the tool itself owns."""

import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional

from ..confirmation import BASH_COMMAND, ConfirmationService
from ..errors import ConfirmationRejected, ShellBlockedError, ShellTimeoutError, ToolError
from ..logger import get_logger

_log = get_logger(__name__)

# A bare `cd` (no chaining) changes the tool's directory; anything else runs in a subshell.
_CD_RE = re.compile(r"^cd(?:\s+(?P<target>[^;&|<>]*))?$")

MAX_STDOUT = 8000
MAX_STDERR = 4000


def _truncate_middle(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + "\n...(truncated)...\n" + text[-half:]


class ShellExecutor:
    """Execute bash commands with a persistent, tool-owned working directory.

    The process-wide cwd is never touched: ``cd`` only moves ``self.cwd``, and
    every command runs with ``cwd=self.cwd``. Other tools resolve relative
    paths through ``get_current_directory()``.
    """

    DANGEROUS_PATTERNS = [
        r"\brm\s+-[a-z]*r[a-z]*f[a-z]*\s+(?:/|~|\$HOME)(?:\s|\*|$)",
        r"\brm\s+-[a-z]*f[a-z]*r[a-z]*\s+(?:/|~|\$HOME)(?:\s|\*|$)",
        r"\bmkfs(?:\.\w+)?\b",
        r"\bdd\b[^;|&]*\bof\s*=\s*/dev/",
        r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
        r">\s*/dev/sd[a-z]",
        r"\b(?:curl|wget)\b[^;|&]*\|\s*(?:sudo\s+)?(?:ba|z|k)?sh\b",
    ]

    def __init__(self, cwd: Optional[str] = None, blocked_commands: Optional[List[str]] = None,
                 timeout: int = 30, confirmation: Optional[ConfirmationService] = None):
        self.cwd = Path(cwd or os.getcwd()).resolve()
        self.timeout = timeout
        self.confirmation = confirmation
        self.blocked = [b for b in (blocked_commands or []) if b.strip()]
        self._dangerous = [re.compile(p, re.IGNORECASE) for p in self.DANGEROUS_PATTERNS]

    def get_current_directory(self) -> str:
        return str(self.cwd)

    # ── safety ──

    @staticmethod
    def _canonicalize(command: str) -> str:
        """Lower-case and drop quoting noise so `r""m -rf /` matches `rm -rf /`."""
        text = command.lower().replace("\\\n", " ")
        text = re.sub(r"[\'\"`\\]", "", text)
        return re.sub(r"\s+", " ", text).strip()

    def block_reason(self, command: str) -> Optional[str]:
        canonical = self._canonicalize(command)
        compact = canonical.replace(" ", "")
        for blocked in self.blocked:
            rule = self._canonicalize(blocked)
            if rule in canonical or rule.replace(" ", "") in compact:
                return f"matches blocked command '{blocked}'"
        for pattern in self._dangerous:
            if pattern.search(command) or pattern.search(canonical):
                return f"matches dangerous pattern '{pattern.pattern}'"
        return None

    # ── execution ──

    def _change_directory(self, target: str) -> str:
        target = target.strip().strip("\"'")
        path = Path(target or "~").expanduser()
        if not path.is_absolute():
            path = self.cwd / path
        path = path.resolve()
        if not path.is_dir():
            raise ToolError("bash", f"Cannot change directory: {target or '~'}: no such directory")
        self.cwd = path
        _log.debug("bash cwd -> %s", path)
        return f"Changed directory to: {path}"

    def execute(self, command: str) -> str:
        command = (command or "").strip()
        if not command:
            raise ToolError("bash", "No command provided")

        cd = _CD_RE.match(command)
        if cd:
            return self._change_directory(cd.group("target") or "")

        reason = self.block_reason(command)
        if reason:
            _log.warning("Command blocked: %s", reason)
            raise ShellBlockedError(reason)

        if self.confirmation is not None:
            reply = self.confirmation.request("Run bash command", command, BASH_COMMAND, preview=command)
            if not reply.confirmed:
                if reply.feedback:
                    raise ToolError("bash", reply.feedback)
                raise ConfirmationRejected("bash", "Bash command execution")

        _log.debug("Executing in %s: %s", self.cwd, command[:100])
        try:
            result = subprocess.run(
                ["bash", "-c", command],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(self.cwd),
                env={**os.environ, "TERM": "dumb"},
            )
        except subprocess.TimeoutExpired:
            raise ShellTimeoutError(self.timeout)
        except OSError as e:
            raise ToolError("bash", f"{type(e).__name__}: {e}")

        parts = []
        if result.stdout:
            parts.append(_truncate_middle(result.stdout, MAX_STDOUT))
        if result.stderr:
            parts.append(f"[stderr]\n{_truncate_middle(result.stderr, MAX_STDERR)}")
        output = "\n".join(parts).strip()

        if result.returncode != 0:
            detail = output or "(no output)"
            raise ToolError("bash", f"{detail}\n[exit code: {result.returncode}]")
        return output or "(no output)"
