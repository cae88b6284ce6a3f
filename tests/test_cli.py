"""
tests/test_cli.py -- Tests for the qms-admin command line in main.py.

main.AuthStore is swapped for a factory returning the per-test store so no
command touches the default database file.
"""

from __future__ import annotations

import pytest

import main
from auth.tokens import verify_password


@pytest.fixture
def cli_store(store, monkeypatch):
    monkeypatch.setattr(main, "AuthStore", lambda: store)
    monkeypatch.setattr(store, "close", lambda: None)
    return store


def test_no_command_prints_help(capsys):
    assert main.main([]) == 0
    assert "create-user" in capsys.readouterr().out


def test_create_user_from_env_password(cli_store, monkeypatch, capsys):
    monkeypatch.setenv("QMS_PASSWORD", "long-enough-pw")
    assert main.main(["create-user", "New@Example.com", "--role", "Auditor", "--name", "Nia"]) == 0
    user = cli_store.get_by_email("new@example.com")
    assert user.role == "Auditor"
    assert user.name == "Nia"
    assert verify_password("long-enough-pw", user.hashed_password)
    assert "Created user" in capsys.readouterr().out


def test_create_user_prompts_when_env_unset(cli_store, monkeypatch):
    monkeypatch.delenv("QMS_PASSWORD", raising=False)
    monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": "prompted-password")
    assert main.main(["create-user", "prompt@example.com"]) == 0
    assert cli_store.get_by_email("prompt@example.com").role == "Viewer"


def test_create_user_password_mismatch(cli_store, monkeypatch):
    monkeypatch.delenv("QMS_PASSWORD", raising=False)
    answers = iter(["first-password", "second-password"])
    monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
    assert main.main(["create-user", "mismatch@example.com"]) == 1
    assert cli_store.get_by_email("mismatch@example.com") is None


@pytest.mark.parametrize("password", ["short", "x" * 73])
def test_create_user_rejects_bad_password_length(cli_store, monkeypatch, password):
    monkeypatch.setenv("QMS_PASSWORD", password)
    assert main.main(["create-user", "len@example.com"]) == 1
    assert cli_store.get_by_email("len@example.com") is None


def test_create_user_duplicate_email(cli_store, user, monkeypatch, capsys):
    monkeypatch.setenv("QMS_PASSWORD", "long-enough-pw")
    assert main.main(["create-user", user.email]) == 1
    assert "already exists" in capsys.readouterr().out


def test_create_user_unknown_role(cli_store, monkeypatch):
    monkeypatch.setenv("QMS_PASSWORD", "long-enough-pw")
    with pytest.raises(SystemExit):
        main.main(["create-user", "role@example.com", "--role", "Overlord"])


def test_list_users(cli_store, user, capsys):
    assert main.main(["list-users"]) == 0
    out = capsys.readouterr().out
    assert user.email in out
    assert "Viewer" in out


def test_list_users_empty(cli_store, capsys):
    assert main.main(["list-users"]) == 0
    assert "No users" in capsys.readouterr().out


def test_revoke_sessions(cli_store, user, capsys):
    session = cli_store.create_session(user.id, 60)
    assert main.main(["revoke-sessions", user.email]) == 0
    assert cli_store.get_active_session(session.id) is None
    assert "Revoked 1 session(s)" in capsys.readouterr().out


def test_revoke_sessions_unknown_user(cli_store):
    assert main.main(["revoke-sessions", "ghost@example.com"]) == 1


def test_purge_sessions(cli_store, user, capsys):
    cli_store.create_session(user.id, -1)
    assert main.main(["purge-sessions"]) == 0
    assert "Purged 1" in capsys.readouterr().out
