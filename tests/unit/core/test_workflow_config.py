"""
Tests for WorkflowConfig and the global configuration.
"""

import json

import pytest

from pharmflow.audit.memory import InMemoryAuditLogger, InMemoryRetentionService
from pharmflow.core import config as config_module
from pharmflow.core.config import WorkflowConfig, configure, get_config
from pharmflow.monitoring.metrics import WorkflowMetrics
from pharmflow.storage.memory import InMemoryPharmacyStorage


@pytest.fixture
def restore_global_config():
    saved = config_module._global_config
    yield
    config_module._global_config = saved


class TestWorkflowConfigDefaults:
    """Tests for default wiring."""

    def test_in_memory_defaults(self):
        config = WorkflowConfig()

        assert isinstance(config.storage, InMemoryPharmacyStorage)
        assert isinstance(config.audit_logger, InMemoryAuditLogger)
        assert isinstance(config.retention_service, InMemoryRetentionService)
        assert isinstance(config.metrics_collector, WorkflowMetrics)
        assert config.lock_timeout == 10.0
        assert config.return_to_stock_days == 10
        assert config.expiring_soon_days == 7
        assert config.refill_percentage == 80

    def test_metrics_disabled(self):
        assert WorkflowConfig(metrics=False).metrics_collector is None

    def test_metrics_instance_kept(self):
        metrics = WorkflowMetrics()

        assert WorkflowConfig(metrics=metrics).metrics_collector is metrics

    def test_retention_uses_min_terminal_days(self):
        assert WorkflowConfig(min_terminal_days=30).retention_service.min_terminal_days == 30

    def test_with_storage(self):
        config = WorkflowConfig(lock_timeout=2.0)
        storage = InMemoryPharmacyStorage()

        copy = config.with_storage(storage)

        assert copy.storage is storage
        assert copy.lock_timeout == 2.0
        assert config.storage is not storage

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"lock_timeout": 0},
            {"expiring_soon_days": 10},
            {"expiring_soon_days": 0},
            {"refill_percentage": 0},
            {"refill_percentage": 120},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            WorkflowConfig(**kwargs)


class TestFromEnv:
    """Tests for WorkflowConfig.from_env."""

    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("PHARMFLOW_LOCK_TIMEOUT", "2.5")
        monkeypatch.setenv("PHARMFLOW_RETURN_TO_STOCK_DAYS", "14")
        monkeypatch.setenv("PHARMFLOW_EXPIRING_SOON_DAYS", "10")
        monkeypatch.setenv("PHARMFLOW_REFILL_PERCENTAGE", "75")
        monkeypatch.setenv("PHARMFLOW_METRICS", "false")

        config = WorkflowConfig.from_env(load_dotenv=False)

        assert config.lock_timeout == 2.5
        assert config.return_to_stock_days == 14
        assert config.expiring_soon_days == 10
        assert config.refill_percentage == 75
        assert config.metrics_collector is None

    def test_bad_numbers_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("PHARMFLOW_RETURN_TO_STOCK_DAYS", "ten")

        assert WorkflowConfig.from_env(load_dotenv=False).return_to_stock_days == 10


class TestFromFile:
    """Tests for WorkflowConfig.from_file."""

    def test_yaml_with_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PHARMFLOW_TEST_TIMEOUT", "3")
        monkeypatch.delenv("PHARMFLOW_TEST_MISSING", raising=False)
        path = tmp_path / "pharmflow.yaml"
        path.write_text(
            "locks:\n"
            "  timeout: ${PHARMFLOW_TEST_TIMEOUT}\n"
            "will_call:\n"
            "  return_to_stock_days: 12\n"
            "  expiring_soon_days: ${PHARMFLOW_TEST_MISSING:-9}\n"
            "claims:\n"
            "  refill_percentage: 85\n"
            "retention:\n"
            "  min_terminal_days: 3\n"
            "observability:\n"
            "  metrics: 'false'\n"
        )

        config = WorkflowConfig.from_file(path)

        assert config.lock_timeout == 3.0
        assert config.return_to_stock_days == 12
        assert config.expiring_soon_days == 9
        assert config.refill_percentage == 85
        assert config.min_terminal_days == 3
        assert config.metrics_collector is None

    def test_json(self, tmp_path):
        path = tmp_path / "pharmflow.json"
        path.write_text(json.dumps({"claims": {"default_markup_percent": 35}}))

        assert WorkflowConfig.from_file(path).default_markup_percent == 35

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert WorkflowConfig.from_file(path).lock_timeout == 10.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            WorkflowConfig.from_file(tmp_path / "nope.yaml")


class TestGlobalConfig:
    """Tests for configure/get_config."""

    def test_configure_replaces_global(self, restore_global_config):
        config = WorkflowConfig(lock_timeout=4.0)

        configure(config)

        assert get_config() is config

    def test_get_config_creates_default(self, restore_global_config):
        config_module._global_config = None

        assert isinstance(get_config(), WorkflowConfig)
        assert get_config() is get_config()
