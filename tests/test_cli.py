from __future__ import annotations

import json
import logging

import pytest

from mentorlink import cli
from mentorlink.api import BackendClient
from mentorlink.config import get_settings
from mentorlink.realtime import ConnectionBroker


@pytest.fixture()
def wired(monkeypatch, marketplace):
    monkeypatch.setattr(
        cli, "BackendClient", lambda session: BackendClient(session, transport=marketplace.transport())
    )
    monkeypatch.setattr(
        cli, "ConnectionBroker", lambda session: ConnectionBroker(session, connector=marketplace.connector)
    )
    return marketplace


def test_probe_sends_message_and_reports_json(wired, capsys) -> None:
    code = cli.main(
        [
            "--backend-url",
            "http://testserver",
            "--user-id",
            "alice",
            "--token",
            "token-alice",
            "--peer",
            "bob",
            "--message",
            "Hello from the probe",
            "--duration",
            "0.05",
            "--json",
        ]
    )

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["connected"] is True
    assert summary["user_id"] == "alice"
    assert summary["url"] == "ws://testserver/ws/alice"
    (history,) = wired.messages.values()
    assert [message["content"] for message in history] == ["Hello from the probe"]
    assert summary["message_id"] == history[0]["message_id"]


def test_probe_exits_with_error_when_unreachable(wired, capsys) -> None:
    wired.refuse_connections = True
    code = cli.main(["--backend-url", "http://testserver", "--user-id", "alice", "--duration", "0"])

    assert code == 1
    assert "connected: False" in capsys.readouterr().out


@pytest.fixture()
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_log_level_defaults_to_settings(monkeypatch, fresh_settings) -> None:
    monkeypatch.setenv("MENTORLINK_LOG_LEVEL", "debug")

    assert cli.resolve_log_level(cli.parse_args(["--user-id", "alice"])) == logging.DEBUG
    assert cli.resolve_log_level(cli.parse_args(["--user-id", "alice", "--log-level", "ERROR"])) == logging.ERROR
