"""System prompt composition: base prompt, custom instructions (GROQ.md), personality."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from . import config
from .logger import get_logger

_log = get_logger(__name__)

INSTRUCTIONS_FILE = "GROQ.md"
PERSONALITY_FILE = "assistant.json"

PERSONALITY_FIELDS = ("name", "role", "personality", "language", "responseStyle", "expertise")

DEFAULT_PERSONALITIES: Dict[str, Dict[str, Any]] = {
    "japanese_assistant": {
        "name": "グロックくん",
        "role": "あなたの優秀な部下",
        "personality": "礼儀正しく、効率的で、積極的に提案を行います",
        "language": "日本語",
        "responseStyle": "丁寧で簡潔、要点を整理して伝えます",
        "expertise": ["プログラミング", "ファイル操作", "タスク管理", "問題解決"],
    },
    "english_coder": {
        "name": "DevBot",
        "role": "Senior Software Engineer",
        "personality": "Professional, helpful, and detail-oriented",
        "language": "English",
        "responseStyle": "Technical but clear, with examples when helpful",
        "expertise": ["Software Development", "System Architecture", "Code Review", "Best Practices"],
    },
    "creative_writer": {
        "name": "Muse",
        "role": "Creative Writing Assistant",
        "personality": "Creative, imaginative, and encouraging",
        "language": "English",
        "responseStyle": "Descriptive and engaging, with creative suggestions",
        "expertise": ["Creative Writing", "Storytelling", "Content Creation", "Editing"],
    },
}

BASE_SYSTEM_PROMPT = """\
You are Groq Agent, an AI assistant that helps with file editing, coding tasks, and system operations.

You have access to these tools:
- view_file: View file contents or directory listings
- create_file: Create new files with content (ONLY for files that don't exist yet)
- str_replace_editor: Replace text in existing files (ALWAYS use this to edit existing files)
- bash: Execute bash commands (searching, file discovery, navigation, system operations)
- create_todo_list: Create a todo list for planning and tracking tasks
- update_todo_list: Update existing todos in your todo list
- web_fetch: Fetch content from URLs (web pages, APIs, etc.)
- web_search: Search the web for current information

Tool usage rules:
- Never use create_file on a file that already exists; use str_replace_editor instead.
- Before editing a file, use view_file to see its current contents.
- Use bash with find, grep, rg or ls to search for files and content.
- Call tools through the structured tool-calling interface, never as text in your reply.

Task planning:
- For multi-step requests, create a todo list first with priorities high, medium or low.
- Mark one task in_progress at a time and mark it completed as soon as it is done.

User confirmation:
File operations and bash commands ask the user for confirmation. If the user rejects an
operation, the tool returns an error; do not retry that operation.

After using tools, report the result directly without pleasantries.

Current working directory: {cwd}"""


def _candidates(filename: str, cwd: Optional[str]) -> list:
    local = Path(cwd or Path.cwd()) / ".groq" / filename
    return [local, config.CONFIG_DIR / filename]


def load_custom_instructions(cwd: Optional[str] = None) -> Optional[str]:
    """Read ./.groq/GROQ.md, falling back to ~/.groq/GROQ.md."""
    for path in _candidates(INSTRUCTIONS_FILE, cwd):
        if path.is_file():
            try:
                text = path.read_text(encoding="utf-8").strip()
            except OSError as e:
                _log.warning("Cannot read %s: %s", path, e)
                continue
            return text or None
    return None


def load_personality(cwd: Optional[str] = None) -> Optional[Dict[str, Any]]:
    for path in _candidates(PERSONALITY_FILE, cwd):
        if not path.is_file():
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _log.warning("Ignoring personality file %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            _log.warning("Ignoring personality file %s: not a JSON object", path)
            return None
        return {k: v for k, v in data.items() if k in PERSONALITY_FIELDS}
    return None


def save_personality(personality: Dict[str, Any], cwd: Optional[str] = None) -> Path:
    """Write a personality to ./.groq/assistant.json and return the path."""
    path = _candidates(PERSONALITY_FILE, cwd)[0]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(personality, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


def generate_personality_prompt(personality: Dict[str, Any]) -> str:
    parts = []
    if personality.get("name"):
        parts.append(f"Your name is {personality['name']}.")
    if personality.get("role"):
        parts.append(f"You are acting as {personality['role']}.")
    if personality.get("personality"):
        parts.append(f"Personality: {personality['personality']}")
    if personality.get("language"):
        parts.append(f"Always respond in {personality['language']}.")
    if personality.get("responseStyle"):
        parts.append(f"Response style: {personality['responseStyle']}")
    expertise = personality.get("expertise")
    if isinstance(expertise, list) and expertise:
        parts.append(f"Areas of expertise: {', '.join(str(e) for e in expertise)}.")
    return " ".join(parts)


def build_system_prompt(cwd: str, instructions: Optional[str] = None,
                        personality: Optional[Dict[str, Any]] = None) -> str:
    prompt = BASE_SYSTEM_PROMPT.replace("{cwd}", cwd)
    if personality:
        persona = generate_personality_prompt(personality)
        if persona:
            prompt = f"{persona}\n\n{prompt}"
    if instructions:
        prompt += (
            "\n\nCUSTOM INSTRUCTIONS:\n"
            f"{instructions}\n\n"
            "Follow the custom instructions above alongside the standard instructions."
        )
    return prompt
