"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (``~/.ghstats/config.yaml``). ``ClientSettings``
gathers everything the composition root needs to build a stats client.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from ghstats.domain.errors import ConfigurationError
from ghstats.domain.models.common import BackoffPolicy, ResourceKind
from ghstats.infrastructure.github.resources import DEFAULT_TTLS
from ghstats.infrastructure.resilience import api_retry

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".ghstats"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "GHSTATS_"

DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_CONCURRENCY = 6
DEFAULT_PER_PAGE = 100
DEFAULT_MAX_PAGES = 10
DEFAULT_RATE_LIMIT_MAX_WAIT_S = 60.0
DEFAULT_CACHE_MAX_ENTRIES = 1000
DEFAULT_POLL_INTERVAL_S = 300

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Loads configuration from the YAML file and a .env file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file (never overrides variables already set)
    3. YAML configuration file
    4. Default values

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _convert(value: str) -> Any:
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _lookup_nested(key: str) -> Any:
    """Finds a dotted key either flat or as nested YAML mappings."""
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. ``GHSTATS_<KEY>`` environment variable
    3. ``<KEY>`` environment variable
    4. YAML config (dotted keys walk nested mappings)
    5. Default value

    Args:
        key: The configuration key, e.g. ``cache.max_entries``
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace(".", "_")
    for candidate in (f"{ENV_PREFIX}{env_key}", env_key):
        if candidate in os.environ:
            return _convert(os.environ[candidate])

    value = _lookup_nested(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# --- Typed settings ---

@dataclass
class ClientSettings:
    """Everything needed to assemble a GitHubStatsClient."""
    username: str
    token: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT_S
    ttls: Dict[ResourceKind, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    max_retries: int = api_retry.DEFAULT_MAX_RETRIES
    initial_delay: float = api_retry.DEFAULT_INITIAL_DELAY_S
    backoff_factor: float = api_retry.DEFAULT_BACKOFF_FACTOR
    max_delay: float = api_retry.DEFAULT_MAX_DELAY_S
    jitter: float = api_retry.DEFAULT_JITTER
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    per_page: int = DEFAULT_PER_PAGE
    max_pages: int = DEFAULT_MAX_PAGES
    rate_limit_max_wait: float = DEFAULT_RATE_LIMIT_MAX_WAIT_S
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    poll_interval: int = DEFAULT_POLL_INTERVAL_S
    include_traffic: bool = True
    include_events: bool = True
    log_level: str = "WARNING"
    log_format: Optional[str] = None
    log_file: Optional[str] = None

    @classmethod
    def from_config(cls, username: Optional[str] = None) -> "ClientSettings":
        """Builds settings from the loaded configuration.

        Args:
            username: Overrides the configured ``github.username``.

        Raises:
            ConfigurationError: If no username is configured or a value is malformed.
        """
        login = username or get_config("github.username") or get_config("github_user")
        if not login:
            raise ConfigurationError(
                "No GitHub username configured. Set GHSTATS_GITHUB_USERNAME or github.username in config.yaml."
            )
        token = get_config("github.token") or get_config("github_token")

        ttls = {}
        for kind, default_ttl in DEFAULT_TTLS.items():
            ttls[kind] = get_config(f"cache.ttl.{kind.value}", default_ttl)

        try:
            settings = cls(
                username=str(login),
                token=str(token) if token else None,
                base_url=str(get_config("github.base_url", DEFAULT_BASE_URL)).rstrip("/"),
                timeout=float(get_config("http.timeout", DEFAULT_TIMEOUT_S)),
                ttls={kind: float(ttl) for kind, ttl in ttls.items()},
                max_retries=int(get_config("retry.max_retries", api_retry.DEFAULT_MAX_RETRIES)),
                initial_delay=float(get_config("retry.initial_delay", api_retry.DEFAULT_INITIAL_DELAY_S)),
                backoff_factor=float(get_config("retry.factor", api_retry.DEFAULT_BACKOFF_FACTOR)),
                max_delay=float(get_config("retry.max_delay", api_retry.DEFAULT_MAX_DELAY_S)),
                jitter=float(get_config("retry.jitter", api_retry.DEFAULT_JITTER)),
                max_concurrency=int(get_config("aggregator.max_concurrency", DEFAULT_MAX_CONCURRENCY)),
                per_page=int(get_config("pagination.per_page", DEFAULT_PER_PAGE)),
                max_pages=int(get_config("pagination.max_pages", DEFAULT_MAX_PAGES)),
                rate_limit_max_wait=float(get_config("rate_limit.max_wait", DEFAULT_RATE_LIMIT_MAX_WAIT_S)),
                cache_max_entries=int(get_config("cache.max_entries", DEFAULT_CACHE_MAX_ENTRIES)),
                poll_interval=int(get_config("watch.interval", DEFAULT_POLL_INTERVAL_S)),
                include_traffic=_as_bool(get_config("aggregator.include_traffic", True)),
                include_events=_as_bool(get_config("aggregator.include_events", True)),
                log_level=str(get_config("logging.level", "WARNING")).upper(),
                log_format=get_config("logging.format"),
                log_file=get_config("logging.file"),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

        if settings.max_retries < 0 or settings.max_concurrency < 1 or (
            settings.per_page < 1 or settings.max_pages < 1 or settings.poll_interval < 1
        ):
            raise ConfigurationError("Retry, concurrency, pagination and watch interval settings must be positive.")
        logger.debug(
            f"Settings resolved: user={settings.username}, authenticated={settings.token is not None}, "
            f"base_url={settings.base_url}"
        )
        return settings

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            factor=self.backoff_factor,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )
