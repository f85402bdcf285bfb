import json

import pytest

from kronos.mcp_setup import (
    install_cursor,
    install_mcp_server,
    install_windsurf,
    remove_mcp_server,
    uninstall_cursor,
    uninstall_windsurf,
)


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_install_creates_config_with_server(tmp_path):
    path = tmp_path / "nested" / "mcp.json"
    assert install_mcp_server(path, "Agent") is True
    server = _read(path)["mcpServers"]["kronos"]
    assert server["args"] == ["serve"]
    assert server["command"] in ("kronos", "kronos.exe")


def test_install_is_idempotent(tmp_path):
    path = tmp_path / "mcp.json"
    install_mcp_server(path, "Agent")
    first = path.read_text(encoding="utf-8")
    assert install_mcp_server(path, "Agent") is False
    assert path.read_text(encoding="utf-8") == first


def test_install_keeps_existing_entry(tmp_path):
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps({"mcpServers": {"kronos": {"command": "custom"}}}))
    assert install_mcp_server(path, "Agent") is False
    assert _read(path)["mcpServers"]["kronos"] == {"command": "custom"}


def test_install_preserves_other_servers_and_keys(tmp_path):
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps({"theme": "dark", "mcpServers": {"other": {"command": "x"}}}))
    install_mcp_server(path, "Agent")
    data = _read(path)
    assert data["theme"] == "dark"
    assert data["mcpServers"]["other"] == {"command": "x"}
    assert "kronos" in data["mcpServers"]


def test_install_rejects_invalid_json(tmp_path):
    path = tmp_path / "mcp.json"
    path.write_text("{broken")
    with pytest.raises(ValueError):
        install_mcp_server(path, "Agent")


def test_remove_round_trip(tmp_path):
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps({"mcpServers": {"other": {"command": "x"}}}))
    install_mcp_server(path, "Agent")
    assert remove_mcp_server(path, "Agent") is True
    assert _read(path)["mcpServers"] == {"other": {"command": "x"}}


def test_remove_missing_file_does_nothing(tmp_path):
    path = tmp_path / "mcp.json"
    assert remove_mcp_server(path, "Agent") is False
    assert not path.exists()


def test_cursor_install_and_uninstall(tmp_path):
    assert install_cursor(tmp_path) is True
    path = tmp_path / ".cursor" / "mcp.json"
    assert "kronos" in _read(path)["mcpServers"]
    assert uninstall_cursor(tmp_path) is True
    assert "kronos" not in _read(path)["mcpServers"]


def test_windsurf_install_and_uninstall(tmp_path):
    assert install_windsurf(tmp_path) is True
    path = tmp_path / ".codeium" / "windsurf" / "mcp_config.json"
    assert _read(path)["mcpServers"]["kronos"]["args"] == ["serve"]
    assert uninstall_windsurf(tmp_path) is True
    assert _read(path)["mcpServers"] == {}


def test_uninstall_windsurf_without_config(tmp_path):
    assert uninstall_windsurf(tmp_path) is False
    assert not (tmp_path / ".codeium").exists()