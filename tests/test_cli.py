#!/usr/bin/env python3
"""Tests for the command-line entry point."""

import json
import pytest
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import shadowx
from shadowx import main, PSK_ENV_VAR
from conftest import wait_for, TEST_SECRET, TEST_HOST


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep main() from attaching handlers or creating log files."""
    monkeypatch.setattr(shadowx, 'configure_logging', lambda *args, **kwargs: None)
    monkeypatch.delenv(PSK_ENV_VAR, raising=False)


def test_missing_secret_prints_usage(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "usage:" in out
    assert "Server Mode" in out


def test_missing_secret_with_file_still_prints_usage(capsys):
    assert main(["-f", "report.bin"]) == 0
    assert "usage:" in capsys.readouterr().out


def test_invalid_address(capsys):
    assert main(["-i", "no-port", "-p", "secret"]) == 2
    assert "Invalid address" in capsys.readouterr().out


def test_client_mode_sends_file(server, server_output_dir, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "report.bin").write_bytes(b"r" * 10000)

    code = main(["-i", f"{TEST_HOST}:{server.port}", "-p", TEST_SECRET, "-f", "report.bin"])

    assert code == 0
    assert wait_for(lambda: server.transfer_stats['files_received'] == 1)
    assert (server_output_dir / "report.bin").stat().st_size == 10000


def test_client_mode_secret_from_environment(server, server_output_dir, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(PSK_ENV_VAR, TEST_SECRET)
    (tmp_path / "env.bin").write_bytes(b"from env")

    assert main(["-i", f"{TEST_HOST}:{server.port}", "-f", "env.bin"]) == 0
    assert wait_for(lambda: server.transfer_stats['files_received'] == 1)


def test_client_mode_wrong_secret_exit_code(server, server_output_dir, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "report.bin").write_bytes(b"r" * 100)

    assert main(["-i", f"{TEST_HOST}:{server.port}", "-p", "wrong", "-f", "report.bin"]) == 1
    assert wait_for(lambda: server.transfer_stats['auth_failures'] == 1)
    assert list(server_output_dir.iterdir()) == []


def test_config_file_and_flag_precedence(server, server_output_dir, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cfg.bin").write_bytes(b"configured")
    config_file = tmp_path / "shadowx.json"
    config_file.write_text(json.dumps({
        "address": f"{TEST_HOST}:{server.port}",
        "psk": "stale-secret",
        "path": "cfg.bin"
    }))

    assert main(["-c", str(config_file), "-p", TEST_SECRET]) == 0
    assert wait_for(lambda: server.transfer_stats['files_received'] == 1)
    assert (server_output_dir / "cfg.bin").read_bytes() == b"configured"


def test_invalid_config_file(tmp_path, capsys):
    config_file = tmp_path / "bad.json"
    config_file.write_text('{"workers": "many"}')

    assert main(["-c", str(config_file), "-p", "x"]) == 2
    assert "Invalid config file" in capsys.readouterr().out


def test_server_mode_generates_identity_and_serves(tmp_path):
    cert_file = tmp_path / "id" / "server.crt"
    key_file = tmp_path / "id" / "server.key"
    started = {}

    def _fake_start(node):
        started['node'] = node

    with patch.object(shadowx.ShadowXNode, 'start_server', _fake_start):
        code = main(["-i", f"{TEST_HOST}:0", "-p", TEST_SECRET,
                     "--cert", str(cert_file), "--key", str(key_file),
                     "-o", str(tmp_path / "out")])

    assert code == 0
    assert cert_file.exists() and key_file.exists()
    node = started['node']
    assert node.mode == 'server'
    assert node.identity.cert_file == cert_file
    assert node.config.output_dir == tmp_path / "out"


def test_server_mode_incomplete_identity(tmp_path):
    cert_file = tmp_path / "server.crt"
    cert_file.write_text("not really a certificate")

    code = main(["-p", TEST_SECRET, "--cert", str(cert_file), "--key", str(tmp_path / "server.key")])

    assert code == 1
