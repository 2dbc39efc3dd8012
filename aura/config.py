from __future__ import annotations

import logging
import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_MAX_STEPS_PER_INVOCATION, DEFAULT_MAX_TURNS


class TicketsConfig(BaseModel):
    """Ticket defaults."""

    default_max_turns: int = DEFAULT_MAX_TURNS


class AgentConfig(BaseModel):
    """Workflow engine behaviour."""

    plan_approval_required: bool = True
    max_steps_per_invocation: int = DEFAULT_MAX_STEPS_PER_INVOCATION


class LLMConfig(BaseModel):
    """Reasoning engine settings passed to the pydantic-ai adapter."""

    model: str = "openai:gpt-4o"
    temperature: float = 0.1
    max_tokens: int = 4096


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "info"


class AuraConfig(BaseModel):
    """Top-level configuration model."""

    tickets: TicketsConfig = TicketsConfig()
    agent: AgentConfig = AgentConfig()
    llm: LLMConfig = LLMConfig()
    logging: LoggingConfig = LoggingConfig()
    database_url: Optional[str] = None
    tickets_database_url: Optional[str] = None


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config(path: Optional[str] = None) -> AuraConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AURA_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("AURA_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AuraConfig(**data)
    else:
        config = AuraConfig()

    env_db_url = os.getenv("AURA_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_tickets_url = os.getenv("AURA_TICKETS_DATABASE_URL")
    if env_tickets_url:
        config.tickets_database_url = env_tickets_url
    env_model = os.getenv("AURA_LLM_MODEL")
    if env_model:
        config.llm.model = env_model
    env_level = os.getenv("AURA_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level.lower()
    env_approval = os.getenv("AURA_PLAN_APPROVAL")
    if env_approval is not None:
        config.agent.plan_approval_required = _env_flag(env_approval)
    return config


def configure_logging(config: Optional[AuraConfig] = None) -> None:
    """Apply the configured log level to the root ``aura`` logger."""

    config = config or load_config()
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logging.getLogger("aura").setLevel(level)
