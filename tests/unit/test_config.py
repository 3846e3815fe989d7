"""
Unit tests for configuration loading and validation.
"""

import os
import tempfile

import pytest
import yaml

from partkit.config import PartkitConfig, StatisticsConfig
from partkit.exceptions import ConfigurationError


class TestPartkitConfig:
    """Test the top-level configuration."""

    def test_defaults(self):
        config = PartkitConfig()

        assert config.database is None
        assert config.conversion.parallel_degree == 4
        assert config.conversion.hash_partition_count == 4
        assert config.statistics.incremental is True
        assert config.statistics.sample_percent is None
        assert config.operation_log.table_name == "PARTITION_OPERATIONS_LOG"

    def test_from_yaml(self, config_file):
        config = PartkitConfig.from_yaml(config_file)

        assert config.service_name == "partkit-test"
        assert config.database.service_name == "ORCLPDB1"
        assert config.conversion.parallel_degree == 8
        assert config.operation_log.sink == "memory"

    def test_env_expansion(self, config_data, monkeypatch):
        monkeypatch.setenv("PARTKIT_TEST_PASSWORD", "from-env")
        config_data["database"]["password"] = "${PARTKIT_TEST_PASSWORD}"

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config_data, f)
        try:
            config = PartkitConfig.from_yaml(f.name)
        finally:
            os.unlink(f.name)

        assert config.database.password == "from-env"

    def test_missing_file(self):
        with pytest.raises(ConfigurationError, match="not found"):
            PartkitConfig.from_yaml("/nonexistent/partkit.yaml")

    def test_invalid_yaml(self):
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("database: [unclosed\n")
        try:
            with pytest.raises(ConfigurationError, match="Invalid YAML"):
                PartkitConfig.from_yaml(f.name)
        finally:
            os.unlink(f.name)

    def test_invalid_values(self, config_data):
        config_data["statistics"] = {"sample_percent": 150}

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config_data, f)
        try:
            with pytest.raises(ConfigurationError, match="Invalid configuration"):
                PartkitConfig.from_yaml(f.name)
        finally:
            os.unlink(f.name)

    def test_round_trip_yaml(self, partkit_config):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "out.yaml")
            partkit_config.to_yaml(path)
            loaded = PartkitConfig.from_yaml(path)

        assert loaded.database == partkit_config.database
        assert loaded.conversion == partkit_config.conversion

    def test_require_database(self):
        with pytest.raises(ConfigurationError, match="No database"):
            PartkitConfig().require_database()


class TestValidateConfig:
    """Test cross-field validation."""

    def test_valid(self, partkit_config):
        partkit_config.validate_config()

    def test_bands_must_increase(self, partkit_config):
        partkit_config.statistics = StatisticsConfig(
            small_table_rows=10_000_000, medium_table_rows=1_000_000
        )

        with pytest.raises(ConfigurationError, match="strictly increasing"):
            partkit_config.validate_config()

    def test_degrees_must_not_decrease(self, partkit_config):
        partkit_config.statistics = StatisticsConfig(large_table_degree=32)

        with pytest.raises(ConfigurationError, match="must not decrease"):
            partkit_config.validate_config()

    def test_database_sink_needs_database(self):
        config = PartkitConfig(operation_log={"sink": "database"})

        with pytest.raises(ConfigurationError, match="requires a database"):
            config.validate_config()

    def test_logging_sink_without_database(self):
        PartkitConfig(operation_log={"sink": "logging"}).validate_config()
