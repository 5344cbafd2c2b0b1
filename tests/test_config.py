"""
Tests for configuration loading.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from memvault.config import (
    DEVELOPMENT,
    PRODUCTION,
    IndexConfig,
    LedgerConfig,
    MemvaultConfig,
    create_default_config_file,
    find_config_file,
    load_config,
    load_config_from_env,
    load_yaml_file,
)
from memvault.memory.types import HNSWParams


class TestMemvaultConfig:
    """Test cases for MemvaultConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = MemvaultConfig()

        assert config.embedding.backend == "sentence-transformers"
        assert config.embedding.model == "sentence-transformers/all-MiniLM-L6-v2"
        assert config.index.backend == "hnsw"
        assert config.index.m == 16
        assert config.index.ef_construction == 200
        assert config.index.ef_search == 50
        assert config.ledger.environment == DEVELOPMENT
        assert config.limits.max_k == 100

    def test_from_dict_minimal(self):
        """Test creating config from an empty dictionary."""
        config = MemvaultConfig.from_dict({})

        assert config.index.m == 16
        assert config.ledger.auto_fund is True

    def test_from_dict_full(self):
        """Test creating config from a full dictionary."""
        config = MemvaultConfig.from_dict({
            "embedding": {"backend": "hashing", "dimension": 128},
            "index": {"backend": "flat", "m": 32, "ef_construction": 400, "ef_search": 80},
            "ledger": {"environment": "production", "auto_fund": False, "deploy_fee": 1.5},
            "limits": {"max_content_length": 500, "default_k": 3, "max_k": 10},
            "logging": {"level": "DEBUG", "json_output": True},
        })

        assert config.embedding.dimension == 128
        assert config.index.backend == "flat"
        assert config.index.m == 32
        assert config.ledger.is_production
        assert config.ledger.deploy_fee == 1.5
        assert config.limits.default_k == 3
        assert config.logging.json_output is True

    def test_invalid_hnsw_values_fall_back(self):
        """Test that non-positive or malformed HNSW values keep the defaults."""
        config = MemvaultConfig.from_dict({
            "index": {"m": 0, "ef_construction": "lots", "ef_search": -5},
        })

        assert config.index.m == 16
        assert config.index.ef_construction == 200
        assert config.index.ef_search == 50

    def test_to_dict_redacts_wallet(self):
        """Test that the wallet path is not exposed."""
        config = MemvaultConfig(ledger=LedgerConfig(wallet_path="/secret/wallet.json"))

        data = config.to_dict()

        assert data["ledger"]["wallet_path"] == "***"
        assert "/secret/wallet.json" not in str(data)

    def test_production_flag(self):
        """Test environment detection."""
        assert LedgerConfig(environment=PRODUCTION).is_production
        assert not LedgerConfig().is_production


class TestHNSWParams:
    """Test cases for index parameters."""

    def test_from_config(self):
        """Test building parameters from index configuration."""
        params = HNSWParams.from_config(IndexConfig(m=8, ef_construction=64, ef_search=32))

        assert params.to_dict() == {"m": 8, "ef_construction": 64, "ef_search": 32}

    def test_defaults(self):
        """Test the default parameters."""
        assert HNSWParams().to_dict() == {"m": 16, "ef_construction": 200, "ef_search": 50}

    @pytest.mark.parametrize("field", ["m", "ef_construction", "ef_search"])
    def test_rejects_non_positive(self, field):
        """Test that every parameter must be positive."""
        with pytest.raises(ValueError):
            HNSWParams(**{field: 0})


class TestFindConfigFile:
    """Test cases for find_config_file function."""

    def test_find_in_directory(self, tmp_path):
        """Test finding config file in specified directory."""
        config_file = tmp_path / ".memvault.yml"
        config_file.write_text("index:\n  backend: flat")

        result = find_config_file(str(tmp_path))

        assert result == config_file

    def test_find_yaml_extension(self, tmp_path):
        """Test finding config file with .yaml extension."""
        config_file = tmp_path / "memvault.yaml"
        config_file.write_text("index:\n  backend: flat")

        result = find_config_file(str(tmp_path))

        assert result == config_file

    def test_not_found(self, tmp_path):
        """Test when no config file is found."""
        result = find_config_file(str(tmp_path))

        assert result is None or isinstance(result, Path)


class TestLoadYamlFile:
    """Test cases for load_yaml_file function."""

    def test_load_valid_yaml(self, tmp_path):
        """Test loading a valid YAML file."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("index:\n  backend: flat\n  m: 24")

        data = load_yaml_file(config_file)

        assert data["index"]["backend"] == "flat"
        assert data["index"]["m"] == 24

    def test_load_empty_yaml(self, tmp_path):
        """Test loading an empty YAML file."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("")

        assert load_yaml_file(config_file) == {}

    def test_load_invalid_yaml(self, tmp_path):
        """Test that malformed YAML loads as empty."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("index: [unclosed")

        assert load_yaml_file(config_file) == {}

    def test_load_nonexistent_file(self, tmp_path):
        """Test loading a non-existent file."""
        assert load_yaml_file(tmp_path / "nonexistent.yml") == {}


class TestLoadConfigFromEnv:
    """Test cases for load_config_from_env function."""

    @patch.dict('os.environ', {'MEMVAULT_ENV': 'PRODUCTION'}, clear=True)
    def test_environment(self):
        """Test selecting the environment."""
        config = load_config_from_env()

        assert config["ledger"]["environment"] == "production"

    @patch.dict('os.environ', {
        'MEMVAULT_M': '32',
        'MEMVAULT_EF_CONSTRUCTION': '300',
        'MEMVAULT_EF_SEARCH': '64',
    }, clear=True)
    def test_hnsw_params(self):
        """Test HNSW parameters from the environment."""
        config = load_config_from_env()

        assert config["index"] == {"m": 32, "ef_construction": 300, "ef_search": 64}

    @patch.dict('os.environ', {'MEMVAULT_M': 'abc', 'MEMVAULT_EF_SEARCH': '0'}, clear=True)
    def test_invalid_hnsw_params_ignored(self):
        """Test that invalid HNSW values are ignored."""
        config = load_config_from_env()

        assert config["index"] == {}

    @patch.dict('os.environ', {
        'MEMVAULT_EMBEDDING_BACKEND': 'hashing',
        'MEMVAULT_INDEX_BACKEND': 'flat',
        'MEMVAULT_DATA_DIR': '/data/indexes',
        'MEMVAULT_WALLET_PATH': '/keys/wallet.json',
        'MEMVAULT_LOG_LEVEL': 'debug',
        'MEMVAULT_LOG_JSON': 'true',
    }, clear=True)
    def test_other_settings(self):
        """Test the remaining environment variables."""
        config = load_config_from_env()

        assert config["embedding"]["backend"] == "hashing"
        assert config["index"]["backend"] == "flat"
        assert config["index"]["data_dir"] == "/data/indexes"
        assert config["ledger"]["wallet_path"] == "/keys/wallet.json"
        assert config["logging"] == {"level": "DEBUG", "json_output": True}


class TestLoadConfig:
    """Test cases for load_config function."""

    @patch.dict('os.environ', {}, clear=True)
    def test_load_from_file(self, tmp_path):
        """Test loading config from an explicit file."""
        config_file = tmp_path / "memvault.yml"
        config_file.write_text("index:\n  backend: flat\n  ef_search: 99\n")

        config = load_config(config_path=str(config_file))

        assert config.index.backend == "flat"
        assert config.index.ef_search == 99
        assert config.index.m == 16

    @patch.dict('os.environ', {'MEMVAULT_EF_SEARCH': '77'}, clear=True)
    def test_env_overrides_file(self, tmp_path):
        """Test that environment variables win over the file."""
        config_file = tmp_path / "memvault.yml"
        config_file.write_text("index:\n  ef_search: 99\n")

        config = load_config(config_path=str(config_file))

        assert config.index.ef_search == 77

    @patch.dict('os.environ', {'MEMVAULT_EF_SEARCH': '77'}, clear=True)
    def test_overrides_win(self, tmp_path):
        """Test that programmatic overrides win over everything."""
        config_file = tmp_path / "memvault.yml"
        config_file.write_text("index:\n  ef_search: 99\n")

        config = load_config(config_path=str(config_file), index={"ef_search": 5})

        assert config.index.ef_search == 5

    @patch.dict('os.environ', {}, clear=True)
    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a missing explicit file falls back to defaults."""
        config = load_config(config_path=str(tmp_path / "missing.yml"))

        assert config.index.backend == "hnsw"


class TestCreateDefaultConfigFile:
    """Test cases for create_default_config_file function."""

    def test_creates_loadable_file(self, tmp_path):
        """Test that the generated file loads back to the defaults."""
        path = create_default_config_file(str(tmp_path / ".memvault.yml"))

        data = load_yaml_file(path)
        config = MemvaultConfig.from_dict(data)

        assert path.exists()
        assert config.index.m == 16
        assert config.ledger.environment == DEVELOPMENT
