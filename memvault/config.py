"""
Configuration Module - Load and manage memvault configuration.

This module provides support for loading configuration from:
- YAML configuration files (.memvault.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic configuration (passed as overrides)
2. Environment variables
3. Configuration file
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".memvault.yml",
    ".memvault.yaml",
    "memvault.yml",
    "memvault.yaml",
]

DEFAULT_DATA_DIR = str(Path.home() / ".memvault" / "indexes")
DEFAULT_WALLET_PATH = str(Path.home() / ".memvault" / "wallet.json")

PRODUCTION = "production"
DEVELOPMENT = "development"


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding backend."""

    backend: str = "sentence-transformers"  # "sentence-transformers" or "hashing"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimension: int = 384  # used by the hashing backend only
    device: Optional[str] = None


@dataclass
class IndexConfig:
    """Configuration for tenant vector indexes."""

    backend: str = "hnsw"  # "hnsw", "flat" or "memory"
    m: int = 16
    ef_construction: int = 200
    ef_search: int = 50
    data_dir: str = DEFAULT_DATA_DIR


@dataclass
class LedgerConfig:
    """Configuration for the ledger used to provision tenants."""

    environment: str = DEVELOPMENT
    wallet_path: str = DEFAULT_WALLET_PATH
    auto_fund: bool = True  # development only
    initial_balance: float = 100.0
    deploy_fee: float = 0.0

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION


@dataclass
class LimitsConfig:
    """Input limits for memory operations."""

    max_content_length: int = 10000
    default_k: int = 10
    max_k: int = 100


@dataclass
class LoggingConfig:
    """Configuration for log output."""

    level: str = "INFO"
    json_output: bool = False


@dataclass
class MemvaultConfig:
    """
    Complete configuration for memvault.

    Example YAML configuration:
        ```yaml
        embedding:
          backend: "sentence-transformers"
          model: "sentence-transformers/all-MiniLM-L6-v2"

        index:
          backend: "hnsw"
          m: 16
          ef_construction: 200
          ef_search: 50

        ledger:
          environment: "development"
          auto_fund: true
        ```
    """

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "MemvaultConfig":
        """Create configuration from dictionary."""
        embedding_data = data.get("embedding", {})
        index_data = data.get("index", {})
        ledger_data = data.get("ledger", {})
        limits_data = data.get("limits", {})
        logging_data = data.get("logging", {})

        return cls(
            embedding=EmbeddingConfig(
                backend=embedding_data.get("backend", "sentence-transformers"),
                model=embedding_data.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
                dimension=embedding_data.get("dimension", 384),
                device=embedding_data.get("device"),
            ),
            index=IndexConfig(
                backend=index_data.get("backend", "hnsw"),
                m=_positive_int(index_data.get("m"), 16),
                ef_construction=_positive_int(index_data.get("ef_construction"), 200),
                ef_search=_positive_int(index_data.get("ef_search"), 50),
                data_dir=index_data.get("data_dir", DEFAULT_DATA_DIR),
            ),
            ledger=LedgerConfig(
                environment=ledger_data.get("environment", DEVELOPMENT),
                wallet_path=ledger_data.get("wallet_path", DEFAULT_WALLET_PATH),
                auto_fund=ledger_data.get("auto_fund", True),
                initial_balance=ledger_data.get("initial_balance", 100.0),
                deploy_fee=ledger_data.get("deploy_fee", 0.0),
            ),
            limits=LimitsConfig(
                max_content_length=limits_data.get("max_content_length", 10000),
                default_k=limits_data.get("default_k", 10),
                max_k=limits_data.get("max_k", 100),
            ),
            logging=LoggingConfig(
                level=logging_data.get("level", "INFO"),
                json_output=logging_data.get("json_output", False),
            ),
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "embedding": {
                "backend": self.embedding.backend,
                "model": self.embedding.model,
                "dimension": self.embedding.dimension,
                "device": self.embedding.device,
            },
            "index": {
                "backend": self.index.backend,
                "m": self.index.m,
                "ef_construction": self.index.ef_construction,
                "ef_search": self.index.ef_search,
                "data_dir": self.index.data_dir,
            },
            "ledger": {
                "environment": self.ledger.environment,
                "wallet_path": "***" if self.ledger.wallet_path else None,  # Redact key location
                "auto_fund": self.ledger.auto_fund,
                "initial_balance": self.ledger.initial_balance,
                "deploy_fee": self.ledger.deploy_fee,
            },
            "limits": {
                "max_content_length": self.limits.max_content_length,
                "default_k": self.limits.default_k,
                "max_k": self.limits.max_k,
            },
            "logging": {
                "level": self.logging.level,
                "json_output": self.logging.json_output,
            },
        }


def _positive_int(value: Any, default: int) -> int:
    """Parse a positive integer, falling back to a default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches in the following order:
    1. The specified start_path directory
    2. Current working directory
    3. Parent directories up to the root
    4. User home directory

    Args:
        start_path: Directory to start searching from.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []

    if start_path:
        search_dirs.append(Path(start_path))

    search_dirs.append(Path.cwd())

    current = Path.cwd()
    while current.parent != current:
        current = current.parent
        search_dirs.append(current)

    search_dirs.append(Path.home())

    for directory in search_dirs:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.exists() and config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> dict:
    """
    Load a YAML configuration file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Dictionary with configuration data.
    """
    try:
        with open(file_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config file {file_path}: {e}")
        return {}


def load_config_from_env() -> dict:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - MEMVAULT_ENV: "development" or "production"
    - MEMVAULT_EMBEDDING_BACKEND: Embedding backend name
    - MEMVAULT_EMBEDDING_MODEL: Embedding model name
    - MEMVAULT_INDEX_BACKEND: Index backend name
    - MEMVAULT_M, MEMVAULT_EF_CONSTRUCTION, MEMVAULT_EF_SEARCH: HNSW parameters
    - MEMVAULT_DATA_DIR: Directory for persisted tenant indexes
    - MEMVAULT_WALLET_PATH: Path to the deploy wallet keyfile
    - MEMVAULT_LOG_LEVEL, MEMVAULT_LOG_JSON: Log output

    Returns:
        Dictionary with configuration from environment.
    """
    config = {"embedding": {}, "index": {}, "ledger": {}, "logging": {}}

    if os.environ.get("MEMVAULT_ENV"):
        config["ledger"]["environment"] = os.environ["MEMVAULT_ENV"].lower()

    if os.environ.get("MEMVAULT_WALLET_PATH"):
        config["ledger"]["wallet_path"] = os.environ["MEMVAULT_WALLET_PATH"]

    if os.environ.get("MEMVAULT_EMBEDDING_BACKEND"):
        config["embedding"]["backend"] = os.environ["MEMVAULT_EMBEDDING_BACKEND"]

    if os.environ.get("MEMVAULT_EMBEDDING_MODEL"):
        config["embedding"]["model"] = os.environ["MEMVAULT_EMBEDDING_MODEL"]

    if os.environ.get("MEMVAULT_INDEX_BACKEND"):
        config["index"]["backend"] = os.environ["MEMVAULT_INDEX_BACKEND"]

    if os.environ.get("MEMVAULT_DATA_DIR"):
        config["index"]["data_dir"] = os.environ["MEMVAULT_DATA_DIR"]

    # HNSW parameters; invalid or non-positive values keep the defaults
    for env_name, key in (
        ("MEMVAULT_M", "m"),
        ("MEMVAULT_EF_CONSTRUCTION", "ef_construction"),
        ("MEMVAULT_EF_SEARCH", "ef_search"),
    ):
        if os.environ.get(env_name):
            try:
                value = int(os.environ[env_name])
            except ValueError:
                continue
            if value > 0:
                config["index"][key] = value

    if os.environ.get("MEMVAULT_LOG_LEVEL"):
        config["logging"]["level"] = os.environ["MEMVAULT_LOG_LEVEL"].upper()

    if os.environ.get("MEMVAULT_LOG_JSON"):
        config["logging"]["json_output"] = os.environ["MEMVAULT_LOG_JSON"].lower() in ("1", "true", "yes")

    return config


def load_config(
    config_path: Optional[str] = None,
    start_path: Optional[str] = None,
    **overrides: Any,
) -> MemvaultConfig:
    """
    Load configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Overrides passed as keyword arguments (section dictionaries)
    2. Environment variables
    3. Configuration file
    4. Default values

    Args:
        config_path: Optional explicit path to config file.
        start_path: Optional directory to search for a config file.
        **overrides: Section overrides, e.g. ``index={"backend": "flat"}``.

    Returns:
        Merged MemvaultConfig.
    """
    merged_config: dict = {}

    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged_config = _deep_merge(merged_config, load_yaml_file(file_path))
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        config_file = find_config_file(start_path)
        if config_file:
            merged_config = _deep_merge(merged_config, load_yaml_file(config_file))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        merged_config = _deep_merge(merged_config, overrides)

    return MemvaultConfig.from_dict(merged_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Dictionary with override values.

    Returns:
        Merged dictionary.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result


def create_default_config_file(path: Optional[str] = None) -> Path:
    """
    Create a default configuration file.

    Args:
        path: Optional path for the config file.

    Returns:
        Path to the created config file.
    """
    if path:
        config_path = Path(path)
    else:
        config_path = Path.cwd() / ".memvault.yml"

    default_content = """# memvault configuration

embedding:
  # Embedding backend: sentence-transformers or hashing
  backend: "sentence-transformers"
  model: "sentence-transformers/all-MiniLM-L6-v2"

index:
  # Index backend: hnsw (faiss), flat (numpy) or memory (not persisted)
  backend: "hnsw"
  m: 16
  ef_construction: 200
  ef_search: 50
  # data_dir: "~/.memvault/indexes"

ledger:
  # development auto-funds the deploy wallet; production never does
  environment: "development"
  auto_fund: true
  initial_balance: 100.0
  # wallet_path: "~/.memvault/wallet.json"

limits:
  max_content_length: 10000
  default_k: 10
  max_k: 100

logging:
  level: "INFO"
  json_output: false
"""

    config_path.write_text(default_content)
    logger.info(f"Created default config file: {config_path}")

    return config_path
