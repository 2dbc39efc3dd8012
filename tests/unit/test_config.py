"""Tests for configuration loading."""

import logging

from aura.config import configure_logging, load_config


def test_defaults_without_file(tmp_path, monkeypatch):
    for name in ("AURA_DATABASE_URL", "DATABASE_URL", "AURA_TICKETS_DATABASE_URL", "AURA_PLAN_APPROVAL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AURA_CONFIG", str(tmp_path / "missing.yaml"))

    config = load_config()
    assert config.agent.plan_approval_required is True
    assert config.agent.max_steps_per_invocation == 25
    assert config.tickets.default_max_turns == 50
    assert config.database_url is None


def test_load_config_from_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
agent:
  plan_approval_required: false
  max_steps_per_invocation: 10
llm:
  model: anthropic:claude-sonnet-4-0
database_url: sqlite:///tmp/checkpoints.db
"""
    )
    monkeypatch.delenv("AURA_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("AURA_PLAN_APPROVAL", raising=False)
    monkeypatch.setenv("AURA_CONFIG", str(config_path))

    config = load_config()
    assert config.agent.plan_approval_required is False
    assert config.agent.max_steps_per_invocation == 10
    assert config.llm.model == "anthropic:claude-sonnet-4-0"
    assert config.database_url == "sqlite:///tmp/checkpoints.db"


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("AURA_DATABASE_URL", "postgresql://db/aura")
    monkeypatch.setenv("AURA_TICKETS_DATABASE_URL", "sqlite+aiosqlite:///tickets.db")
    monkeypatch.setenv("AURA_PLAN_APPROVAL", "no")
    monkeypatch.setenv("AURA_LOG_LEVEL", "DEBUG")

    config = load_config(str(config_path))
    assert config.database_url == "postgresql://db/aura"
    assert config.tickets_database_url == "sqlite+aiosqlite:///tickets.db"
    assert config.agent.plan_approval_required is False
    assert config.logging.level == "debug"

    configure_logging(config)
    assert logging.getLogger("aura").level == logging.DEBUG
