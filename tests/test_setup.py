"""
Setup Script Tests
==================

Bootstrap helper, with subprocess calls replaced.
"""

import subprocess

import pytest

import setup


def test_run_command_success(monkeypatch, capsys):
    calls = []
    kwargs_seen = {}

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        kwargs_seen.update(kwargs)
        return subprocess.CompletedProcess(cmd, 0, stdout="ok\n", stderr="")

    monkeypatch.setattr(setup.subprocess, "run", fake_run)

    assert setup.run_command(["echo", "ok"], "Saying ok") is True
    assert calls == [["echo", "ok"]]
    assert "shell" not in kwargs_seen
    assert "Saying ok completed" in capsys.readouterr().out


def test_run_command_failure(monkeypatch, capsys):
    def fake_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="boom")

    monkeypatch.setattr(setup.subprocess, "run", fake_run)

    assert setup.run_command(["false"], "Failing") is False
    assert "boom" in capsys.readouterr().out


def test_main_stops_at_first_failure(monkeypatch):
    steps = []

    def fake_run_command(cmd, description):
        steps.append(description)
        return False

    monkeypatch.setattr(setup, "run_command", fake_run_command)
    with pytest.raises(SystemExit) as info:
        setup.main()

    assert info.value.code == 1
    assert len(steps) == 1


def test_main_installs_project_then_browser(monkeypatch):
    commands = []
    monkeypatch.setattr(setup, "run_command", lambda cmd, description: commands.append(cmd) or True)
    setup.main()

    assert all(isinstance(cmd, list) for cmd in commands)
    assert commands[0][1:5] == ["-m", "pip", "install", "-e"]
    assert commands[1][1:] == ["-m", "playwright", "install", "chromium"]
