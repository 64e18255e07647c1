"""Configuration management for the relay server."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


@dataclass
class PairingConfig:
    """Pairing code configuration."""

    code_ttl: float = 420.0  # 7 minutes
    bind_grace: float = 5.0  # seconds a joined code stays visible to status
    max_attempts: int = 100


@dataclass
class MessagesConfig:
    """Per-pair message log configuration."""

    max_length: int = 1000  # code points
    capacity: int = 500


@dataclass
class TypingConfig:
    """Typing indicator configuration."""

    window: float = 3.0  # seconds


@dataclass
class Config:
    """Server configuration."""

    port: int = 5000
    bind_address: str = "0.0.0.0"
    api_prefix: str = "/api"
    cors_origin: str = "*"
    log_level: str = "INFO"
    log_file: str | None = None
    # 2025-01-27 10:30:45 [INFO] message
    log_format: str = "%(asctime)s [%(levelname)s] %(message)s"
    access_log: bool = False  # route aiohttp request lines through our handlers
    pairing: PairingConfig = field(default_factory=PairingConfig)
    messages: MessagesConfig = field(default_factory=MessagesConfig)
    typing: TypingConfig = field(default_factory=TypingConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "pairrelay" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        code_ttl=float(pairing_data.get("code_ttl", PairingConfig.code_ttl)),
        bind_grace=float(pairing_data.get("bind_grace", PairingConfig.bind_grace)),
        max_attempts=int(
            pairing_data.get("max_attempts", PairingConfig.max_attempts)
        ),
    )

    messages_data = data.get("messages") or {}
    messages_config = MessagesConfig(
        max_length=int(messages_data.get("max_length", MessagesConfig.max_length)),
        capacity=int(messages_data.get("capacity", MessagesConfig.capacity)),
    )

    typing_data = data.get("typing") or {}
    typing_config = TypingConfig(
        window=float(typing_data.get("window", TypingConfig.window)),
    )

    return Config(
        port=int(data.get("port", Config.port)),
        bind_address=data.get("bind_address", Config.bind_address),
        api_prefix=data.get("api_prefix", Config.api_prefix),
        cors_origin=data.get("cors_origin", Config.cors_origin),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        log_format=data.get("log_format", Config.log_format),
        access_log=bool(data.get("access_log", Config.access_log)),
        pairing=pairing_config,
        messages=messages_config,
        typing=typing_config,
    )
