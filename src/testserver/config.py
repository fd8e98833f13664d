"""Test server configuration.

Configuration is optional. When present it is a YAML mapping, e.g.:

    bind: 127.0.0.1
    port: 0
    key_size: 2048
    go_binary: /usr/local/go/bin/go
    actool_binary: actool
    build_timeout: 600
    request_timeout: 10

The file is taken from the --config option, or from the
ACI_TESTSERVER_CONFIG environment variable. Credentials are fixed test
constants and cannot be configured.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ACI_TESTSERVER_CONFIG"


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class ServerConfig:
    """Settings for one test server run."""
    bind: str = "127.0.0.1"
    port: int = 0  # Ephemeral
    cert_dir: Optional[Path] = None  # Temp dir, removed at shutdown
    key_size: int = 2048
    go_binary: str = "go"
    actool_binary: str = "actool"
    build_timeout: int = 600
    request_timeout: int = 10  # Idle connection limit, seconds

    def __post_init__(self):
        if isinstance(self.cert_dir, str):
            self.cert_dir = Path(self.cert_dir)


_TYPES = {
    "bind": str,
    "port": int,
    "cert_dir": str,
    "key_size": int,
    "go_binary": str,
    "actool_binary": str,
    "build_timeout": int,
    "request_timeout": int,
}


def load_config(path: Optional[Path] = None) -> ServerConfig:
    """Load server configuration.

    Args:
        path: YAML file to read (default: $ACI_TESTSERVER_CONFIG)

    Returns:
        ServerConfig; defaults when no file is configured or it is missing

    Raises:
        ConfigError: On unreadable YAML, unknown keys or wrong value types
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return ServerConfig()
        path = Path(env_path)

    if not path.exists():
        logger.debug("Config file not found, using defaults: %s", path)
        return ServerConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return ServerConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")

    known = {f.name for f in fields(ServerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    for key, value in data.items():
        expected = _TYPES[key]
        # bool is an int subclass; reject it for numeric settings
        if not isinstance(value, expected) or isinstance(value, bool):
            raise ConfigError(
                f"Config key '{key}' must be {expected.__name__}, got {type(value).__name__}"
            )

    logger.info("Loaded config from %s", path)
    return ServerConfig(**data)
