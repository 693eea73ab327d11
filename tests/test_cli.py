"""Smoke tests for the typer CLI."""

from typer.testing import CliRunner

from advisor_bot import __version__
from advisor_bot.chat import ChatStore
from advisor_bot.cli import app
from advisor_bot.config import settings

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_conversations_lists_titles(monkeypatch):
    monkeypatch.setattr(settings, "default_user_email", "advisor@example.com")
    from advisor_bot.accounts import AccountStore

    user = AccountStore(settings.db_path).get_or_create_user("advisor@example.com")
    ChatStore(settings.db_path).create_conversation(user.id, "Retirement planning")

    result = runner.invoke(app, ["conversations"])

    assert result.exit_code == 0
    assert "Retirement planning" in result.stdout


def test_user_required(monkeypatch):
    monkeypatch.setattr(settings, "default_user_email", None)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1


def test_disconnect_unknown_provider(monkeypatch):
    monkeypatch.setattr(settings, "default_user_email", "advisor@example.com")
    result = runner.invoke(app, ["disconnect", "dropbox"])
    assert result.exit_code == 1
    assert "Unknown provider" in result.stdout
