"""Core."""

from .config import (
    ActivationConfig,
    DNSConfig,
    HostclaimConfig,
    ServerConfig,
    VerificationConfig,
    clear_config,
    flatten_config,
    get_config,
    load_config_from_file,
)

__all__ = [
    "ActivationConfig",
    "DNSConfig",
    "HostclaimConfig",
    "ServerConfig",
    "VerificationConfig",
    "clear_config",
    "flatten_config",
    "get_config",
    "load_config_from_file",
]
