"""Tests for bots.config module."""

import os
from unittest import mock

import pytest

from bots.config import (
    EnvironmentConfig,
    PollConfig,
    env_bool,
    env_float,
    env_int,
    read_poll_config,
)
from fightrise.remote import DEFAULT_API_URL

REQUIRED = {
    "DISCORD_TOKEN": "token",
    "STARTGG_API_KEY": "startgg-key",
    "TOURNAMENT_TABLE_NAME": "FightRiseTournaments",
}


class TestEnvHelpers:
    """Test the typed environment readers."""

    def test_env_bool_default_when_unset(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert env_bool("TEST_VAR") is False
            assert env_bool("TEST_VAR", default=True) is True

    def test_env_bool_recognised_values(self):
        for value, expected in [("1", True), (" Yes ", True), ("off", False), ("0", False)]:
            with mock.patch.dict(os.environ, {"TEST_VAR": value}, clear=True):
                assert env_bool("TEST_VAR") is expected, f"Failed for value: {value}"

    def test_env_bool_unrecognised_falls_back(self):
        with mock.patch.dict(os.environ, {"TEST_VAR": "maybe"}, clear=True):
            assert env_bool("TEST_VAR", default=True) is True

    def test_env_int_parses_and_falls_back(self):
        with mock.patch.dict(os.environ, {"GOOD": "42", "BAD": "x", "EMPTY": ""}, clear=True):
            assert env_int("GOOD") == 42
            assert env_int("BAD", default=7) == 7
            assert env_int("EMPTY", default=3) == 3
            assert env_int("MISSING") is None

    def test_env_float_parses_and_falls_back(self):
        with mock.patch.dict(os.environ, {"GOOD": "2.5", "BAD": "fast"}, clear=True):
            assert env_float("GOOD") == 2.5
            assert env_float("BAD", default=1.0) == 1.0


class TestPollConfig:
    """Test poll tuning read from the environment."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert read_poll_config() == PollConfig()

    def test_overrides(self):
        env = {
            "POLL_CONCURRENCY": "4",
            "POLL_MAX_ATTEMPTS": "5",
            "POLL_BACKOFF_BASE": "0.5",
            "POLL_SHUTDOWN_TIMEOUT": "10",
            "POLL_LEASE_SECONDS": "120",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = read_poll_config()
        assert config == PollConfig(
            concurrency=4,
            max_attempts=5,
            backoff_base=0.5,
            shutdown_timeout=10.0,
            lease_seconds=120,
        )

    def test_invalid_values_use_defaults(self):
        env = {"POLL_CONCURRENCY": "many", "POLL_BACKOFF_BASE": "soon"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = read_poll_config()
        assert config.concurrency == PollConfig().concurrency
        assert config.backoff_base == PollConfig().backoff_base


class TestEnvironmentConfig:
    """Test loading the runtime configuration."""

    def test_missing_required_vars(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError) as excinfo:
                EnvironmentConfig.load()
        assert str(excinfo.value) == (
            "Missing env vars: DISCORD_TOKEN, STARTGG_API_KEY, TOURNAMENT_TABLE_NAME"
        )

    def test_partial_config_names_only_missing(self):
        env = dict(REQUIRED)
        del env["STARTGG_API_KEY"]
        with mock.patch.dict(os.environ, env, clear=True):
            with pytest.raises(RuntimeError, match="Missing env vars: STARTGG_API_KEY$"):
                EnvironmentConfig.load()

    def test_defaults(self):
        with mock.patch.dict(os.environ, REQUIRED, clear=True):
            config = EnvironmentConfig.load()
        assert config.discord_token == "token"
        assert config.startgg_api_key == "startgg-key"
        assert config.tournament_table_name == "FightRiseTournaments"
        assert config.aws_region == "us-east-1"
        assert config.startgg_api_url == DEFAULT_API_URL
        assert config.admin_role_id is None
        assert config.sync_commands is True
        assert config.poll == PollConfig()

    def test_optional_overrides(self):
        env = dict(
            REQUIRED,
            AWS_REGION="eu-west-1",
            STARTGG_API_URL="https://example.test/gql",
            TOURNAMENT_ADMIN_ROLE_ID="77",
            SYNC_COMMANDS="false",
            POLL_CONCURRENCY="2",
        )
        with mock.patch.dict(os.environ, env, clear=True):
            config = EnvironmentConfig.load()
        assert config.aws_region == "eu-west-1"
        assert config.startgg_api_url == "https://example.test/gql"
        assert config.admin_role_id == 77
        assert config.sync_commands is False
        assert config.poll.concurrency == 2
