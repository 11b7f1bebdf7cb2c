"""Configuration helpers for the bot runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

from fightrise.remote import DEFAULT_API_URL
from fightrise.scheduler import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_CONCURRENCY,
    DEFAULT_LEASE_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_SHUTDOWN_TIMEOUT,
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class PollConfig:
    concurrency: int = DEFAULT_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    lease_seconds: int = DEFAULT_LEASE_SECONDS


def read_poll_config() -> PollConfig:
    return PollConfig(
        concurrency=env_int("POLL_CONCURRENCY", default=DEFAULT_CONCURRENCY)
        or DEFAULT_CONCURRENCY,
        max_attempts=env_int("POLL_MAX_ATTEMPTS", default=DEFAULT_MAX_ATTEMPTS)
        or DEFAULT_MAX_ATTEMPTS,
        backoff_base=env_float("POLL_BACKOFF_BASE", default=DEFAULT_BACKOFF_BASE)
        or DEFAULT_BACKOFF_BASE,
        shutdown_timeout=env_float(
            "POLL_SHUTDOWN_TIMEOUT", default=DEFAULT_SHUTDOWN_TIMEOUT
        )
        or DEFAULT_SHUTDOWN_TIMEOUT,
        lease_seconds=env_int("POLL_LEASE_SECONDS", default=DEFAULT_LEASE_SECONDS)
        or DEFAULT_LEASE_SECONDS,
    )


@dataclass(slots=True)
class EnvironmentConfig:
    discord_token: str
    startgg_api_key: str
    tournament_table_name: str
    aws_region: str
    startgg_api_url: str
    admin_role_id: int | None
    sync_commands: bool
    poll: PollConfig

    @classmethod
    def load(cls) -> "EnvironmentConfig":
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        startgg_api_key = need("STARTGG_API_KEY")
        tournament_table_name = need("TOURNAMENT_TABLE_NAME")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            startgg_api_key=startgg_api_key,
            tournament_table_name=tournament_table_name,
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            startgg_api_url=os.getenv("STARTGG_API_URL") or DEFAULT_API_URL,
            admin_role_id=env_int("TOURNAMENT_ADMIN_ROLE_ID"),
            sync_commands=env_bool("SYNC_COMMANDS", default=True),
            poll=read_poll_config(),
        )


__all__ = [
    "EnvironmentConfig",
    "PollConfig",
    "env_bool",
    "env_float",
    "env_int",
    "read_poll_config",
]
