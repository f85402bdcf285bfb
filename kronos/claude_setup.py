"""Register the memory server, hooks and tool permissions in Claude Code settings."""

from __future__ import annotations

import json
import os
import shutil
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

KRONOS_TOOL_PERMISSIONS: tuple[str, ...] = (
    "mcp__kronos__mem_save",
    "mcp__kronos__mem_search",
    "mcp__kronos__mem_context",
    "mcp__kronos__mem_get_observation",
    "mcp__kronos__mem_update",
    "mcp__kronos__mem_delete",
    "mcp__kronos__mem_session_start",
    "mcp__kronos__mem_session_end",
    "mcp__kronos__mem_session_summary",
    "mcp__kronos__mem_checkpoint",
    "mcp__kronos__mem_save_prompt",
    "mcp__kronos__mem_judge",
    "mcp__kronos__mem_compare",
    "mcp__kronos__mem_suggest_topic_key",
    "mcp__kronos__mem_timeline",
    "mcp__kronos__mem_stats",
    "mcp__kronos__mem_current_project",
    "mcp__kronos__mem_capture_passive",
    "mcp__kronos__mem_merge_projects",
    "mcp__kronos__mem_doctor",
)

# event name -> canonical hook command
KRONOS_HOOKS: dict[str, str] = {
    "SessionStart": "kronos hook session-start",
    "UserPromptSubmit": "kronos hook prompt-submit",
    "SubagentStop": "kronos hook subagent-stop",
    "Stop": "kronos hook session-stop",
}


@dataclass(frozen=True)
class _HookEntry:
    type: str
    command: str = ""
    prompt: str = ""

    def to_json(self) -> dict[str, str]:
        data = {"type": self.type}
        if self.command:
            data["command"] = self.command
        if self.prompt:
            data["prompt"] = self.prompt
        return data


_Matchers = list[list[_HookEntry]]


def kronos_bin() -> str:
    """Resolved path of the installed kronos command, or its bare name."""
    found = shutil.which("kronos")
    if found:
        return os.path.realpath(found)
    return "kronos.exe" if sys.platform.startswith("win") else "kronos"


def _text(mapping: dict[str, Any], key: str) -> str:
    value = mapping.get(key)
    return value if isinstance(value, str) else ""


def _matchers(raw: Any) -> _Matchers:
    """Normalise a parsed hooks array, dropping malformed and empty entries."""
    if not isinstance(raw, list):
        return []
    result: _Matchers = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        hooks_raw = item.get("hooks")
        entries: list[_HookEntry] = []
        for hook in hooks_raw if isinstance(hooks_raw, list) else []:
            if not isinstance(hook, dict):
                continue
            entry = _HookEntry(_text(hook, "type"), _text(hook, "command"), _text(hook, "prompt"))
            if entry.type == "agent" and not entry.prompt:
                continue
            if entry.type == "command" and not entry.command:
                continue
            entries.append(entry)
        if entries:
            result.append(entries)
    return result


def _dump(matchers: _Matchers) -> list[dict[str, Any]] | None:
    if not matchers:
        return None
    return [{"hooks": [entry.to_json() for entry in m]} for m in matchers]


def _filter(matchers: _Matchers, keep: Callable[[_HookEntry], bool]) -> _Matchers:
    result: _Matchers = []
    for m in matchers:
        kept = [entry for entry in m if keep(entry)]
        if kept:
            result.append(kept)
    return result


def _is_legacy_node_hook(command: str) -> bool:
    return command.startswith("node ") and "kronos" in command and command.endswith(".js")


def _remove_legacy_node_hooks(hooks: dict[str, Any]) -> bool:
    changed = False
    for event, raw in list(hooks.items()):
        current = _matchers(raw)
        filtered = _filter(current, lambda e: not _is_legacy_node_hook(e.command))
        if len(filtered) != len(current):
            hooks[event] = _dump(filtered)
            changed = True
    return changed


def _normalize_kronos_hooks(hooks: dict[str, Any]) -> bool:
    """Replace absolute-path kronos hook commands with the canonical short form."""
    changed = False
    for event, canonical in KRONOS_HOOKS.items():
        parts = canonical.split(" ", 1)
        suffix = parts[1] if len(parts) == 2 else ""
        if not suffix:
            continue
        rebuilt: _Matchers = []
        event_changed = False
        for m in _matchers(hooks.get(event)):
            kept: list[_HookEntry] = []
            for entry in m:
                command = entry.command
                if command.endswith(" " + suffix) and ("/" in command or "\\" in command):
                    kept.append(_HookEntry("command", canonical))
                    event_changed = True
                else:
                    kept.append(entry)
            if kept:
                rebuilt.append(kept)
        if event_changed:
            hooks[event] = _dump(rebuilt)
            changed = True
    return changed


def _merge_hooks(hooks: dict[str, Any]) -> bool:
    changed = False
    for event, command in KRONOS_HOOKS.items():
        current = _matchers(hooks.get(event))
        if any(entry.command == command for m in current for entry in m):
            continue
        hooks[event] = _dump(current + [[_HookEntry("command", command)]])
        changed = True
    return changed


def _remove_kronos_hooks(hooks: dict[str, Any]) -> None:
    for event, command in KRONOS_HOOKS.items():
        hooks[event] = _dump(_filter(_matchers(hooks.get(event)), lambda e: e.command != command))


def _desired_server() -> dict[str, Any]:
    return {"command": kronos_bin(), "args": ["serve"], "type": "stdio"}


def _is_current_server(entry: Any) -> bool:
    return isinstance(entry, dict) and entry.get("command") == kronos_bin()


def _merge_mcp_server(settings: dict[str, Any]) -> bool:
    servers = settings.get("mcpServers")
    if not isinstance(servers, dict):
        servers = {}
    if _is_current_server(servers.get("kronos")):
        return False
    servers["kronos"] = _desired_server()
    settings["mcpServers"] = servers
    return True


def _merge_user_mcp_file(path: Path) -> bool:
    """Point mcpServers.kronos in the user config file at the current binary."""
    root: dict[str, Any] = {}
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            root = loaded
    except (OSError, ValueError):
        pass
    servers = root.get("mcpServers")
    if not isinstance(servers, dict):
        servers = {}
    if _is_current_server(servers.get("kronos")):
        return False
    servers["kronos"] = _desired_server()
    root["mcpServers"] = servers
    try:
        path.write_text(_encode(root), encoding="utf-8")
    except OSError:
        pass
    return True


def _merge_permissions(settings: dict[str, Any]) -> bool:
    perms = settings.get("permissions")
    if not isinstance(perms, dict):
        perms = {}
    allow = perms.get("allow")
    allow = list(allow) if isinstance(allow, list) else []
    existing = {item for item in allow if isinstance(item, str)}
    missing = [p for p in KRONOS_TOOL_PERMISSIONS if p not in existing]
    if not missing:
        return False
    perms["allow"] = allow + missing
    settings["permissions"] = perms
    return True


def _encode(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def _load_settings(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ValueError(f"load settings: parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"load settings: parse {path}: not a JSON object")
    return data


def _save_settings(path: Path, settings: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_encode(settings), encoding="utf-8")


def _hooks_of(settings: dict[str, Any]) -> dict[str, Any]:
    hooks = settings.get("hooks")
    return hooks if isinstance(hooks, dict) else {}


def install_claude_code(
    claude_dir: str | os.PathLike[str] | None = None,
    mcp_file: str | os.PathLike[str] | None = None,
) -> bool:
    """Merge hooks, MCP server and permissions into settings.json; True if anything changed."""
    claude_path = Path(claude_dir) if claude_dir is not None else Path.home() / ".claude"
    mcp_path = Path(mcp_file) if mcp_file is not None else Path.home() / ".claude.json"
    settings_path = claude_path / "settings.json"

    settings = _load_settings(settings_path)
    hooks = _hooks_of(settings)
    legacy_removed = _remove_legacy_node_hooks(hooks)
    normalized = _normalize_kronos_hooks(hooks)
    hooks_changed = _merge_hooks(hooks) or legacy_removed or normalized
    settings["hooks"] = hooks

    mcp_changed = _merge_mcp_server(settings)
    user_mcp_changed = _merge_user_mcp_file(mcp_path)
    perms_changed = _merge_permissions(settings)

    if not (hooks_changed or mcp_changed or user_mcp_changed or perms_changed):
        print("Kronos is already configured in Claude Code — no changes.")
        return False

    _save_settings(settings_path, settings)
    print(f"Kronos configured in {settings_path}")
    if hooks_changed:
        print("  hooks: SessionStart, UserPromptSubmit, SubagentStop, Stop")
    if mcp_changed or user_mcp_changed:
        print("  MCP server: kronos serve (stdio)")
    if perms_changed:
        print("  permissions: mem_* tools auto-allowed")
    return True


def uninstall(claude_dir: str | os.PathLike[str] | None = None) -> None:
    """Remove the kronos hooks from settings.json."""
    claude_path = Path(claude_dir) if claude_dir is not None else Path.home() / ".claude"
    settings_path = claude_path / "settings.json"
    settings = _load_settings(settings_path)
    hooks = _hooks_of(settings)
    _remove_kronos_hooks(hooks)
    settings["hooks"] = hooks
    _save_settings(settings_path, settings)
    print("Kronos hooks removed.")