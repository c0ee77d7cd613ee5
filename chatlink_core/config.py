"""Gateway configuration loading.

Configuration is an optional YAML file overlaid with environment variables:

    server:
      host: 0.0.0.0
      port: 3000
    client_id: chatlink-gateway
    data_dir: .chatlink_auth
    downloads_dir: downloads
    capability:
      host: 127.0.0.1
      port: 8765
      path: /capability
      request_timeout: 60
    retry:
      max_attempts: 3
      auth_failure_delay: 5
      init_failure_delay: 5
      disconnect_delay: 10
      clean_session_delay: 2
    log_level: INFO
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .lifecycle import RetryPolicy

ENV_PORT = "PORT"
ENV_CAPABILITY_HOST = "CHATLINK_CAPABILITY_HOST"
ENV_CAPABILITY_PORT = "CHATLINK_CAPABILITY_PORT"
ENV_LOG_LEVEL = "CHATLINK_LOG_LEVEL"


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime configuration for the gateway.

    Attributes:
        host: Bind address for the HTTP API.
        port: Bind port for the HTTP API.
        client_id: Fixed client identity the session data is keyed by.
        data_dir: Directory holding persisted session data.
        downloads_dir: Directory media downloads are written to.
        capability_host: Protocol sidecar host.
        capability_port: Protocol sidecar port.
        capability_path: Protocol sidecar websocket path.
        request_timeout: Seconds to wait for a sidecar command result.
        retry: Retry ceiling and delays for the lifecycle manager.
        log_level: Root logging level name.
    """

    host: str = "0.0.0.0"
    port: int = 3000
    client_id: str = "chatlink-gateway"
    data_dir: Path = Path(".chatlink_auth")
    downloads_dir: Path = Path("downloads")
    capability_host: str = "127.0.0.1"
    capability_port: int = 8765
    capability_path: str = "/capability"
    request_timeout: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    log_level: str = "INFO"

    def retry_policy(self) -> RetryPolicy:
        return self.retry


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigError(f"Invalid YAML in {path}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from err


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{name} must be a number, got {value!r}") from err


def load_config(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> GatewayConfig:
    """Build configuration from an optional YAML file and the environment.

    Raises:
        ConfigError: If the file is missing or a value is invalid.
    """
    env = os.environ if environ is None else environ
    data = _load_yaml(path) if path is not None else {}
    defaults = GatewayConfig()

    server = _section(data, "server")
    capability = _section(data, "capability")
    retry = _section(data, "retry")

    port = env.get(ENV_PORT, server.get("port", defaults.port))
    capability_host = env.get(
        ENV_CAPABILITY_HOST, capability.get("host", defaults.capability_host)
    )
    capability_port = env.get(
        ENV_CAPABILITY_PORT, capability.get("port", defaults.capability_port)
    )
    log_level = env.get(ENV_LOG_LEVEL, data.get("log_level", defaults.log_level))

    base = defaults.retry
    try:
        policy = RetryPolicy(
            max_attempts=_as_int(
                retry.get("max_attempts", base.max_attempts), "retry.max_attempts"
            ),
            auth_failure_delay=_as_float(
                retry.get("auth_failure_delay", base.auth_failure_delay),
                "retry.auth_failure_delay",
            ),
            init_failure_delay=_as_float(
                retry.get("init_failure_delay", base.init_failure_delay),
                "retry.init_failure_delay",
            ),
            disconnect_delay=_as_float(
                retry.get("disconnect_delay", base.disconnect_delay),
                "retry.disconnect_delay",
            ),
            clean_session_delay=_as_float(
                retry.get("clean_session_delay", base.clean_session_delay),
                "retry.clean_session_delay",
            ),
        )
    except ValueError as err:
        raise ConfigError(str(err)) from err

    return GatewayConfig(
        host=str(server.get("host", defaults.host)),
        port=_as_int(port, "server.port"),
        client_id=str(data.get("client_id", defaults.client_id)),
        data_dir=Path(data.get("data_dir", defaults.data_dir)),
        downloads_dir=Path(data.get("downloads_dir", defaults.downloads_dir)),
        capability_host=str(capability_host),
        capability_port=_as_int(capability_port, "capability.port"),
        capability_path=str(capability.get("path", defaults.capability_path)),
        request_timeout=_as_float(
            capability.get("request_timeout", defaults.request_timeout),
            "capability.request_timeout",
        ),
        retry=policy,
        log_level=str(log_level).upper(),
    )
