"""
Configuration management for Medea.

Settings for both Medea services and the routing table they share. A value
comes from the first of these that sets it:

1. MEDEA_* environment variables (and PROMETHEUS_URL)
2. ~/.medea/config.yaml
3. the dataclass defaults below

The configuration is assembled once at startup by load_config(), checked
with Config.validate() and then handed to the services explicitly.

Configuration sections:
- logging: Log level, file output, verbosity
- scout: Capacity query service address and metrics backend
- balancer: Submission service address, scout address, forwarding settings
- store: Routing table database location
"""

import os
import yaml
from pathlib import Path
from urllib.parse import urlparse
from typing import Optional, Dict
from dataclasses import dataclass, field, asdict

from medea.errors import ConfigError
from medea.utils.logging import get_logger, LOG_LEVELS

log = get_logger("config")

# Configuration directory and file paths
CONFIG_DIR = Path.home() / ".medea"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

@dataclass
class LoggingConfig:
    """
    Logging configuration section.
    """
    # Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    level: str = "INFO"
    # Optional path to log file (None = stdout only)
    file: Optional[str] = None
    # Enable verbose output with logger name and line number
    verbose: bool = False
    # Rotate the log file at this size in bytes (0 = never rotate)
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 3

@dataclass
class ScoutConfig:
    """
    Scout service configuration section.
    """
    host: str = "0.0.0.0"
    port: int = 8080
    # Prometheus server exposing kube_resourcequota for every cluster
    prometheus_url: str = "http://localhost:9090"
    # Seconds before a metrics query is abandoned
    query_timeout: float = 10.0
    # Seed for cluster selection (None = nondeterministic)
    seed: Optional[int] = None

@dataclass
class BalancerConfig:
    """
    Balancer service configuration section.
    """
    host: str = "0.0.0.0"
    port: int = 8000
    scout_url: str = "http://localhost:8080"
    # Seconds before a call to a downstream cluster is abandoned
    forward_timeout: float = 10.0
    scout_timeout: float = 10.0
    # Header carrying the caller's token, relayed to the downstream cluster
    auth_header: str = "tuz"

@dataclass
class StoreConfig:
    """
    Routing table store configuration section.
    """
    # sqlite database file
    path: str = "~/.medea/routing.db"
    # Seconds to wait on a locked database
    timeout: float = 10.0

    @property
    def db_path(self) -> Path:
        return Path(self.path).expanduser()


@dataclass
class Config:
    """All four sections; each default is built fresh per instance."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scout: ScoutConfig = field(default_factory=ScoutConfig)
    balancer: BalancerConfig = field(default_factory=BalancerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def to_dict(self) -> dict:
        """
        Convert configuration to dictionary.

        :return: Nested dictionary representation of all configuration sections.
        """
        return asdict(self)

    def validate(self) -> "Config":
        """
        Check every field that a service depends on at startup.

        :return: The configuration itself, to allow chaining.
        :raises ConfigError: On the first invalid field found.
        """
        if self.logging.level.upper() not in LOG_LEVELS:
            raise ConfigError(f"logging.level must be one of {list(LOG_LEVELS)}, got '{self.logging.level}'")

        for section in ("scout", "balancer"):
            port = getattr(self, section).port
            if not isinstance(port, int) or not 0 < port < 65536:
                raise ConfigError(f"{section}.port must be between 1 and 65535, got {port!r}")

        for name, url in (("scout.prometheus_url", self.scout.prometheus_url),
                          ("balancer.scout_url", self.balancer.scout_url)):
            parsed = urlparse(url or "")
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ConfigError(f"{name} must be an http(s) URL, got '{url}'")

        for name, value in (("scout.query_timeout", self.scout.query_timeout),
                            ("balancer.forward_timeout", self.balancer.forward_timeout),
                            ("balancer.scout_timeout", self.balancer.scout_timeout),
                            ("store.timeout", self.store.timeout)):
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number of seconds, got {value!r}")

        if not self.balancer.auth_header:
            raise ConfigError("balancer.auth_header must not be empty")
        if not self.store.path:
            raise ConfigError("store.path must not be empty")
        if self.logging.max_bytes < 0 or self.logging.backup_count < 0:
            raise ConfigError("logging.max_bytes and logging.backup_count must not be negative")
        return self

    def save(self, path: Path = None) -> None:
        """Write the configuration as YAML, creating the directory if needed."""
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        log.info(f"Wrote config {path}")


# Environment variable -> (section, key)
ENV_MAPPINGS = {
    "MEDEA_LOG_LEVEL": ("logging", "level"),
    "MEDEA_LOG_FILE": ("logging", "file"),
    "MEDEA_SCOUT_PORT": ("scout", "port"),
    "PROMETHEUS_URL": ("scout", "prometheus_url"),
    "MEDEA_SCOUT_SEED": ("scout", "seed"),
    "MEDEA_BALANCER_PORT": ("balancer", "port"),
    "MEDEA_SCOUT_URL": ("balancer", "scout_url"),
    "MEDEA_AUTH_HEADER": ("balancer", "auth_header"),
    "MEDEA_FORWARD_TIMEOUT": ("balancer", "forward_timeout"),
    "MEDEA_DB_PATH": ("store", "path"),
}

# Fields whose default is None and therefore cannot drive the type conversion
_OPTIONAL_INT_FIELDS = {("scout", "seed")}


def _apply_env_vars(cfg: Config) -> None:
    """Overwrite fields from ENV_MAPPINGS, converted to the type of the field."""
    for env_var, (section, key) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        section_obj = getattr(cfg, section)
        current = getattr(section_obj, key)

        try:
            if isinstance(current, bool):
                value = value.lower() in ("true", "1", "yes")
            elif isinstance(current, int) or (section, key) in _OPTIONAL_INT_FIELDS:
                value = int(value)
            elif isinstance(current, float):
                value = float(value)
        except ValueError:
            raise ConfigError(f"{env_var}={value!r} is not a valid {section}.{key}")

        setattr(section_obj, key, value)
        log.debug(f"Config override from {env_var}: {section}.{key} = {value}")


def _load_from_dict(cfg: Config, data: Dict) -> None:
    for section in ("logging", "scout", "balancer", "store"):
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        section_obj = getattr(cfg, section)
        for k, v in values.items():
            if hasattr(section_obj, k):
                setattr(section_obj, k, v)
            else:
                log.warning(f"Ignoring unknown config key {section}.{k}")


def load_config(config_path: Path = None) -> Config:
    """
    Build the effective configuration: defaults, then the YAML file when it
    exists, then environment overrides. An unreadable file is logged and
    skipped; a bad environment value raises ConfigError.
    """
    config = Config()

    path = config_path or CONFIG_FILE
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise yaml.YAMLError("top level must be a mapping")
            _load_from_dict(config, data)
            log.debug(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            # Continue with defaults + env vars
            log.warning(f"Failed to load config from {path}: {e}")

    _apply_env_vars(config)
    return config
