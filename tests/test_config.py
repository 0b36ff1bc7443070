"""Tests for configuration loading and retry policy."""

import pytest

from closureflow.config import (
    AppConfig,
    DatabaseType,
    LogLevel,
    get_testing_config,
    reset_config,
    validate_config,
)
from closureflow.core.error_recovery import RetryConfig


@pytest.fixture(autouse=True)
def clean_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Environment-driven configuration."""

    def test_defaults(self):
        config = AppConfig()
        assert config.port == 8080
        assert config.database_type == DatabaseType.SQLITE
        assert config.task_retry_max_attempts == 3
        assert config.get_database_connect_args() == {"check_same_thread": False}

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CLOSUREFLOW_PORT", "9090")
        monkeypatch.setenv("CLOSUREFLOW_DATABASE_URL", "postgresql://user:pw@db/flows")
        monkeypatch.setenv("CLOSUREFLOW_LOG_LEVEL", "debug")
        monkeypatch.setenv("CLOSUREFLOW_ACTION_BASE_URL", "https://actions.test")
        monkeypatch.setenv("CLOSUREFLOW_TASK_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CLOSUREFLOW_CORS_ORIGINS", "https://a.test,https://b.test")

        config = AppConfig.from_env()

        assert config.port == 9090
        assert config.database_type == DatabaseType.POSTGRESQL
        assert config.get_database_connect_args() == {}
        assert config.log_level == LogLevel.DEBUG
        assert config.action_base_url == "https://actions.test"
        assert config.task_retry_max_attempts == 5
        assert config.cors_origins == ["https://a.test", "https://b.test"]

    @pytest.mark.parametrize("field, value", [
        ("database_url", "oracle://db"),
        ("port", 70000),
        ("task_retry_max_attempts", 0),
        ("execution_timeout", 0),
        ("action_timeout", -1),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            AppConfig(**{field: value})

    def test_validate_config_rejects_inverted_delays(self):
        with pytest.raises(ValueError):
            validate_config(AppConfig(task_retry_base_delay=10, task_retry_max_delay=1))

    def test_testing_preset(self):
        config = get_testing_config()
        validate_config(config)
        assert config.database_url == "sqlite:///:memory:"
        assert config.task_retry_max_attempts == 1


class TestRetryConfig:
    """Retry decisions and backoff."""

    def test_from_config(self):
        retry = RetryConfig.from_config(AppConfig(task_retry_max_attempts=4, task_retry_base_delay=0.2))
        assert retry.max_attempts == 4
        assert retry.base_delay == 0.2

    @pytest.mark.parametrize("status_code, attempt, expected", [
        (None, 1, True),
        (500, 1, True),
        (503, 2, True),
        (503, 3, False),
        (404, 1, False),
        (429, 1, False),
    ])
    def test_should_retry(self, status_code, attempt, expected):
        assert RetryConfig(max_attempts=3).should_retry(status_code, attempt) is expected

    def test_client_errors_opt_in(self):
        assert RetryConfig(retry_on_client_errors=True).should_retry(404, 1)

    def test_delay_grows_and_is_capped(self):
        retry = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert [retry.get_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_within_half_to_full_delay(self):
        retry = RetryConfig(base_delay=2.0, jitter=True)
        for _ in range(20):
            assert 1.0 <= retry.get_delay(1) <= 2.0

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
