"""
Configuration module for the batch search runner.

Supports loading from YAML/JSON files with environment variable overrides.
Default values are loaded from defaults.yaml for maintainability.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# Path to the default configuration file
_DEFAULTS_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

# Cache for default values
_defaults_cache: dict[str, Any] | None = None

# Named tunables read by the runner through PropertiesProvider
BATCH_SEARCH_THROTTLE = "batch_throttle_milliseconds"
BATCH_SEARCH_MAX_TIME = "batch_search_max_time_seconds"
SCROLL_SIZE = "scroll_size"


def _load_defaults() -> dict[str, Any]:
    """Load default configuration values from defaults.yaml."""
    global _defaults_cache

    if _defaults_cache is not None:
        return _defaults_cache

    if not _DEFAULTS_CONFIG_PATH.exists():
        logger.warning(f"Defaults config not found: {_DEFAULTS_CONFIG_PATH}")
        _defaults_cache = {}
        return _defaults_cache

    try:
        content = _DEFAULTS_CONFIG_PATH.read_text(encoding="utf-8")
        _defaults_cache = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse defaults config: {e}")
        _defaults_cache = {}

    return _defaults_cache


def _get_default(section: str, key: str, fallback: Any = None) -> Any:
    """Get a default value from the defaults config."""
    defaults = _load_defaults()
    section_defaults = defaults.get(section) or {}
    return section_defaults.get(key, fallback)


@dataclass
class IndexConfig:
    """Configuration for the Qdrant search index."""

    host: str = field(default_factory=lambda: _get_default("index", "host", "localhost"))
    port: int = field(default_factory=lambda: _get_default("index", "port", 6333))
    url: Optional[str] = field(default_factory=lambda: _get_default("index", "url", None))
    api_key: Optional[str] = field(default_factory=lambda: _get_default("index", "api_key", None))
    timeout: float = field(default_factory=lambda: _get_default("index", "timeout", 30.0))


@dataclass
class StoreConfig:
    """Configuration for the batch search store."""

    db_path: str = field(
        default_factory=lambda: _get_default("store", "db_path", ".batchsearch/batch_search.db")
    )


@dataclass
class BatchSearchConfig:
    """
    Tunables of the batch search runner.

    Unset values are left as None; the runner applies its own defaults.
    """

    throttle_milliseconds: Optional[int] = field(
        default_factory=lambda: _get_default("batch_search", "throttle_milliseconds", None)
    )
    max_time_seconds: Optional[int] = field(
        default_factory=lambda: _get_default("batch_search", "max_time_seconds", None)
    )
    scroll_size: Optional[int] = field(
        default_factory=lambda: _get_default("batch_search", "scroll_size", None)
    )


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = field(default_factory=lambda: _get_default("logging", "level", "INFO"))
    format: str = field(
        default_factory=lambda: _get_default(
            "logging", "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    )


@dataclass
class BatchSearchAppConfig:
    """Main configuration class for the batch search runner."""

    index: IndexConfig = field(default_factory=IndexConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    batch_search: BatchSearchConfig = field(default_factory=BatchSearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "BatchSearchAppConfig":
        """
        Load configuration from a YAML or JSON file.

        Args:
            path: Path to the configuration file (.yaml, .yml, or .json)

        Returns:
            BatchSearchAppConfig instance with loaded values

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ValueError: If the file format is unsupported
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".json":
            data = json.loads(content) if content.strip() else {}
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "BatchSearchAppConfig":
        """Create BatchSearchAppConfig from a dictionary."""
        config = cls()

        if "index" in data:
            config.index = IndexConfig(**data["index"])
        if "store" in data:
            config.store = StoreConfig(**data["store"])
        if "batch_search" in data:
            config.batch_search = BatchSearchConfig(**data["batch_search"])
        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

        return config

    def apply_env_overrides(self) -> "BatchSearchAppConfig":
        """
        Apply environment variable overrides to the configuration.

        Environment variables follow the pattern: BATCHSEARCH_<SECTION>_<KEY>
        Examples:
            - BATCHSEARCH_INDEX_HOST
            - BATCHSEARCH_STORE_DB_PATH
            - BATCHSEARCH_BATCH_SEARCH_SCROLL_SIZE
            - BATCHSEARCH_LOGGING_LEVEL

        Returns:
            Self with environment overrides applied
        """
        env_mappings = {
            # Index config
            "BATCHSEARCH_INDEX_HOST": ("index", "host", str),
            "BATCHSEARCH_INDEX_PORT": ("index", "port", int),
            "BATCHSEARCH_INDEX_URL": ("index", "url", str),
            "BATCHSEARCH_INDEX_API_KEY": ("index", "api_key", str),
            "BATCHSEARCH_INDEX_TIMEOUT": ("index", "timeout", float),
            # Store config
            "BATCHSEARCH_STORE_DB_PATH": ("store", "db_path", str),
            # Runner tunables
            "BATCHSEARCH_BATCH_SEARCH_THROTTLE_MILLISECONDS": (
                "batch_search", "throttle_milliseconds", int
            ),
            "BATCHSEARCH_BATCH_SEARCH_MAX_TIME_SECONDS": ("batch_search", "max_time_seconds", int),
            "BATCHSEARCH_BATCH_SEARCH_SCROLL_SIZE": ("batch_search", "scroll_size", int),
            # Logging config
            "BATCHSEARCH_LOGGING_LEVEL": ("logging", "level", str),
        }

        for env_var, (section, key, converter) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                section_obj = getattr(self, section)
                setattr(section_obj, key, converter(value))

        return self

    def to_dict(self) -> dict:
        """Convert configuration to a dictionary."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Serialize configuration to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        """Serialize configuration to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def save(self, path: Path | str) -> None:
        """
        Save configuration to a file.

        Args:
            path: Path to save the configuration (.yaml, .yml, or .json)

        Raises:
            ValueError: If the file format is unsupported
        """
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            content = self.to_yaml()
        elif path.suffix == ".json":
            content = self.to_json()
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


class PropertiesProvider:
    """
    Read-only string accessor over the runner tunables.

    Values are looked up on every call, so changes made to the underlying
    config after the runner was built are picked up by the next run.
    """

    _KEYS = {
        BATCH_SEARCH_THROTTLE: "throttle_milliseconds",
        BATCH_SEARCH_MAX_TIME: "max_time_seconds",
        SCROLL_SIZE: "scroll_size",
    }

    def __init__(self, config: Optional[BatchSearchAppConfig] = None):
        self._config = config or BatchSearchAppConfig()

    def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` as a string, or None when unset."""
        attr = self._KEYS.get(key)
        if attr is None:
            return None
        value = getattr(self._config.batch_search, attr)
        return None if value is None else str(value)

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "PropertiesProvider":
        """Build a provider from a flat ``{key: value}`` mapping."""
        section = BatchSearchConfig(throttle_milliseconds=None, max_time_seconds=None, scroll_size=None)
        for key, value in values.items():
            attr = cls._KEYS.get(key)
            if attr is None:
                raise ValueError(f"Unknown batch search property: {key}")
            setattr(section, attr, value)
        return cls(BatchSearchAppConfig(batch_search=section))


def load_config(
    config_path: Optional[Path | str] = None, apply_env: bool = True
) -> BatchSearchAppConfig:
    """
    Load configuration with optional environment variable overrides.

    Args:
        config_path: Optional path to config file. If None, uses defaults.
        apply_env: Whether to apply environment variable overrides.

    Returns:
        BatchSearchAppConfig instance
    """
    if config_path:
        config = BatchSearchAppConfig.from_file(config_path)
    else:
        config = BatchSearchAppConfig()

    if apply_env:
        config.apply_env_overrides()

    return config
