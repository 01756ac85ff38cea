#!/usr/bin/env python3
"""
Relay Configuration
Defaults come from environment variables; an optional relay.yaml overrides them.
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Largest opaque payload a peer may push, and the receive buffer around it.
# Datagrams are read whole (up to the UDP maximum) so oversized ones can be
# reported before being cut to the receive buffer.
MAX_PAYLOAD_SIZE = 1000
RECEIVE_BUFFER_SIZE = 1010
MAX_DATAGRAM_SIZE = 65535


@dataclass
class RelayConfig:
    """Configuration for a single relay loop"""
    listen_port: int
    measure_latency: bool = False
    name: str = "relay"
    bind_host: str = field(
        default_factory=lambda: os.getenv('RELAY_BIND_HOST', '0.0.0.0'))
    receive_timeout: float = field(
        default_factory=lambda: float(os.getenv('RELAY_RECEIVE_TIMEOUT', '5.0')))
    send_delay: float = field(
        default_factory=lambda: float(os.getenv('RELAY_SEND_DELAY', '1.0')))
    buffer_size: int = RECEIVE_BUFFER_SIZE


@dataclass
class HostConfig:
    """Configuration for the client-side / server-side relay pair"""
    bind_host: str = field(
        default_factory=lambda: os.getenv('RELAY_BIND_HOST', '0.0.0.0'))
    client_port: int = field(
        default_factory=lambda: int(os.getenv('RELAY_CLIENT_PORT', '5023')))
    server_port: int = field(
        default_factory=lambda: int(os.getenv('RELAY_SERVER_PORT', '5069')))
    receive_timeout: float = field(
        default_factory=lambda: float(os.getenv('RELAY_RECEIVE_TIMEOUT', '5.0')))
    send_delay: float = field(
        default_factory=lambda: float(os.getenv('RELAY_SEND_DELAY', '1.0')))
    metrics_port: int = field(
        default_factory=lambda: int(os.getenv('RELAY_METRICS_PORT', '0')))
    default_payload: bytes = b""

    def client_side(self) -> RelayConfig:
        """Client-facing loop; this one times the round trips"""
        return RelayConfig(
            listen_port=self.client_port,
            measure_latency=True,
            name="client-side",
            bind_host=self.bind_host,
            receive_timeout=self.receive_timeout,
            send_delay=self.send_delay,
        )

    def server_side(self) -> RelayConfig:
        return RelayConfig(
            listen_port=self.server_port,
            measure_latency=False,
            name="server-side",
            bind_host=self.bind_host,
            receive_timeout=self.receive_timeout,
            send_delay=self.send_delay,
        )


class ConfigLoader:
    """Loads and validates relay.yaml configuration"""

    @staticmethod
    def load(config_path: str) -> HostConfig:
        """Load configuration from YAML file"""
        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)

            logger.info(f"Loaded configuration from {config_path}")
            return ConfigLoader._parse_config(config or {})

        except FileNotFoundError:
            logger.error(f"Config file not found: {config_path}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error: {e}")
            raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

    @staticmethod
    def _parse_config(config: dict) -> HostConfig:
        """Parse configuration dictionary, keeping env defaults for missing keys"""
        if not isinstance(config, dict):
            raise ConfigError("top-level configuration must be a mapping")

        cfg = HostConfig()
        relay = config.get('relay', {}) or {}
        timing = config.get('timing', {}) or {}
        metrics = config.get('metrics', {}) or {}

        try:
            if 'bind_host' in relay:
                cfg.bind_host = str(relay['bind_host'])
            if 'client_port' in relay:
                cfg.client_port = int(relay['client_port'])
            if 'server_port' in relay:
                cfg.server_port = int(relay['server_port'])
            if 'default_payload' in relay:
                cfg.default_payload = str(relay['default_payload']).encode()
            if 'receive_timeout' in timing:
                cfg.receive_timeout = float(timing['receive_timeout'])
            if 'send_delay' in timing:
                cfg.send_delay = float(timing['send_delay'])
            if 'port' in metrics:
                cfg.metrics_port = int(metrics['port'])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration value: {e}") from e

        return cfg

    @staticmethod
    def validate(config: HostConfig) -> HostConfig:
        """Validate configuration consistency"""
        for label, port in (('client_port', config.client_port),
                            ('server_port', config.server_port)):
            if not 0 <= port <= 65535:
                raise ConfigError(f"{label} out of range: {port}")

        # Port 0 asks the OS for an ephemeral port, so two zeros never clash
        if config.client_port and config.client_port == config.server_port:
            raise ConfigError(f"client_port and server_port must differ ({config.client_port})")

        if config.receive_timeout <= 0:
            raise ConfigError("receive_timeout must be > 0")
        if config.send_delay < 0:
            raise ConfigError("send_delay must be >= 0")

        if not 0 <= config.metrics_port <= 65535:
            raise ConfigError(f"metrics_port out of range: {config.metrics_port}")

        if len(config.default_payload) > MAX_PAYLOAD_SIZE:
            raise ConfigError(f"default_payload exceeds {MAX_PAYLOAD_SIZE} bytes")

        logger.info("Configuration validation passed")
        return config


def load_config(config_path: Optional[str] = None) -> HostConfig:
    """Env defaults, optionally overridden by a YAML file, then validated"""
    cfg = ConfigLoader.load(config_path) if config_path else HostConfig()
    return ConfigLoader.validate(cfg)
