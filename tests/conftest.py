"""
Pytest configuration and shared fixtures.
"""

import logging

import pytest

from memvault.config import MemvaultConfig
from memvault.memory.embeddings import EmbeddingEngine, HashingBackend, set_embedding_engine
from memvault.memory.ledger import build_shared_config, reset_shared_config
from memvault.observability.logging import ROOT_LOGGER_NAME


TEST_DIMENSION = 64


@pytest.fixture(autouse=True)
def reset_process_state():
    """Forget process-wide singletons between tests."""
    yield
    reset_shared_config()
    set_embedding_engine(None)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True


def make_config(tmp_path, **sections) -> MemvaultConfig:
    """Offline configuration rooted in a temporary directory."""
    data = {
        "embedding": {"backend": "hashing", "dimension": TEST_DIMENSION},
        "index": {"backend": "memory", "data_dir": str(tmp_path / "indexes")},
        "ledger": {
            "environment": "development",
            "wallet_path": str(tmp_path / "wallet.json"),
        },
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return MemvaultConfig.from_dict(data)


@pytest.fixture
def memvault_config(tmp_path):
    """Development configuration with in-memory indexes and hashed embeddings."""
    return make_config(tmp_path)


@pytest.fixture
def config_factory(tmp_path):
    """Build test configurations with some sections overridden."""
    def factory(**sections) -> MemvaultConfig:
        return make_config(tmp_path, **sections)
    return factory


@pytest.fixture
def install_config():
    """Make a configuration the source of the shared ledger config."""
    def install(config: MemvaultConfig) -> MemvaultConfig:
        reset_shared_config(lambda: build_shared_config(config))
        return config
    return install


@pytest.fixture
def shared_config(memvault_config, install_config):
    """Build the shared ledger config from the test configuration."""
    return install_config(memvault_config)


@pytest.fixture
def engine():
    """Hashing embedding engine installed as the process-wide engine."""
    engine = EmbeddingEngine(HashingBackend(dimension=TEST_DIMENSION))
    set_embedding_engine(engine)
    return engine
