"""Register the memory server in editors that read a plain MCP config file."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any


def _binary_name() -> str:
    return "kronos.exe" if sys.platform.startswith("win") else "kronos"


def _load_config(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ValueError(f"parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"parse {path}: not a JSON object")
    return data


def _save_config(path: Path, config: dict[str, Any]) -> None:
    path.write_text(
        json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )


def _servers(config: dict[str, Any]) -> dict[str, Any]:
    servers = config.get("mcpServers")
    if not isinstance(servers, dict):
        servers = {}
        config["mcpServers"] = servers
    return servers


def install_mcp_server(config_path: str | os.PathLike[str], agent_name: str) -> bool:
    """Add the kronos server to an MCP config file; False when already present."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        config = _load_config(path) if path.exists() else {}
    except ValueError as exc:
        raise ValueError(f"load {agent_name} MCP config: {exc}") from exc

    servers = _servers(config)
    if "kronos" in servers:
        print(f"Kronos is already registered in {agent_name} — no changes.")
        return False

    servers["kronos"] = {"command": _binary_name(), "args": ["serve"]}
    _save_config(path, config)
    print(f"Kronos registered as MCP server in {agent_name} ({path})")
    return True


def remove_mcp_server(config_path: str | os.PathLike[str], agent_name: str) -> bool:
    """Remove the kronos server from an MCP config file; False when there is no file."""
    path = Path(config_path)
    if not path.exists():
        return False
    config = _load_config(path)
    servers = _servers(config)
    servers.pop("kronos", None)
    _save_config(path, config)
    print(f"Kronos removed from {agent_name} MCP config.")
    return True


def _home(home: str | os.PathLike[str] | None) -> Path:
    return Path(home) if home is not None else Path.home()


def _cursor_config(home: str | os.PathLike[str] | None) -> Path:
    return _home(home) / ".cursor" / "mcp.json"


def _windsurf_config(home: str | os.PathLike[str] | None) -> Path:
    return _home(home) / ".codeium" / "windsurf" / "mcp_config.json"


def install_cursor(home: str | os.PathLike[str] | None = None) -> bool:
    """Register kronos in Cursor's MCP config."""
    return install_mcp_server(_cursor_config(home), "Cursor")


def uninstall_cursor(home: str | os.PathLike[str] | None = None) -> bool:
    """Remove kronos from Cursor's MCP config."""
    return remove_mcp_server(_cursor_config(home), "Cursor")


def install_windsurf(home: str | os.PathLike[str] | None = None) -> bool:
    """Register kronos in Windsurf's MCP config."""
    path = _windsurf_config(home)
    path.parent.mkdir(parents=True, exist_ok=True)
    return install_mcp_server(path, "Windsurf")


def uninstall_windsurf(home: str | os.PathLike[str] | None = None) -> bool:
    """Remove kronos from Windsurf's MCP config."""
    return remove_mcp_server(_windsurf_config(home), "Windsurf")