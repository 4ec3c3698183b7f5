"""Configuration types with environment variable support.

All settings can be configured via environment variables with the HOSTCLAIM_ prefix.
Example: HOSTCLAIM_PLATFORM_DOMAIN=platform.example sets the verification zone.
"""

from __future__ import annotations

import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict) and key != "consistency_resolvers":
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


_SETTINGS = SettingsConfigDict(
    env_prefix="HOSTCLAIM_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class VerificationConfig(BaseSettings):
    """CNAME challenge and rate limiting configuration.

    Environment overrides:
    - HOSTCLAIM_PLATFORM_DOMAIN: Zone the verify-<token> targets live under
    - HOSTCLAIM_DEFAULT_SUBDOMAIN: Subdomain suggested when an apex is rejected
    - HOSTCLAIM_MAX_ATTEMPTS: Probes allowed before throttling
    - etc.
    """

    model_config = _SETTINGS

    platform_domain: str = Field(
        default="platform.example",
        description="Platform-controlled zone for verification targets.",
    )
    default_subdomain: str = Field(
        default="booking",
        description="Conventional subdomain suggested for apex attempts.",
    )
    token_ttl: int = Field(
        default=86400,
        gt=0,
        description="Lifetime of a verification token in seconds (24 hours).",
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Verification probes allowed per rate-limit window.",
    )
    rate_limit_window: int = Field(
        default=3600,
        gt=0,
        description="Seconds after the last check before the attempt counter resets.",
    )
    check_cooldown: int = Field(
        default=300,
        ge=0,
        description="Advisory seconds between DNS checks (next_check_at).",
    )
    ttl_recommendation: int = Field(
        default=300,
        description="DNS TTL suggested to tenants during setup.",
    )

    @property
    def token_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.token_ttl)

    @property
    def rate_limit_window_delta(self) -> timedelta:
        return timedelta(seconds=self.rate_limit_window)

    @property
    def check_cooldown_delta(self) -> timedelta:
        return timedelta(seconds=self.check_cooldown)


class DNSConfig(BaseSettings):
    """DNS probe configuration."""

    model_config = _SETTINGS

    dns_timeout: float = Field(
        default=3.0,
        gt=0,
        description="Per-lookup timeout in seconds.",
    )
    dns_tries: int = Field(
        default=1,
        ge=1,
        description="Resolver attempts per lookup.",
    )
    nameservers: list[str] = Field(
        default_factory=list,
        description="Nameservers for primary lookups. Empty uses the system resolver.",
    )
    consistency_resolvers: dict[str, list[str]] = Field(
        default_factory=lambda: {"cloudflare": ["1.1.1.1"], "google": ["8.8.8.8"]},
        description="Independent resolvers for the propagation check.",
    )


class ActivationConfig(BaseSettings):
    """Activation and TLS authorization configuration."""

    model_config = _SETTINGS

    activation_target: str | None = Field(
        default=None,
        description="Final CNAME target for live traffic. Defaults to the platform domain.",
    )
    require_cutover_dns: bool = Field(
        default=False,
        description="Only activate once the hostname CNAMEs to the activation target.",
    )
    tls_allowed_plans: list[str] = Field(
        default_factory=lambda: ["professional", "enterprise"],
        description="Subscription plans allowed to obtain certificates. Empty allows all.",
    )
    provisioner_secret: str | None = Field(
        default=None,
        repr=False,
        description="Shared secret for HMAC-signed SSL provisioner callbacks.",
    )


class ServerConfig(BaseSettings):
    """HTTP API and storage configuration."""

    model_config = _SETTINGS

    api_host: str = Field(default="127.0.0.1", description="API bind host.")
    api_port: int = Field(default=8080, description="API bind port.")
    storage_path: str = Field(
        default="domains.json",
        description="Path to the JSON file storing domain records.",
    )
    log_level: str = Field(default="info", description="Log level.")


class HostclaimConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.verification.platform_domain)
        print(config.dns.dns_timeout)
    """

    model_config = _SETTINGS

    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    dns: DNSConfig = Field(default_factory=DNSConfig)
    activation: ActivationConfig = Field(default_factory=ActivationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_flat(cls, values: dict[str, Any]) -> HostclaimConfig:
        """Build a config from flat keys, e.g. the output of ``flatten_config``.

        Keys may carry their section prefix (``verification_max_attempts``) or
        not (``max_attempts``). Environment variables fill anything missing.
        """
        sections: dict[str, type[BaseSettings]] = {
            "verification": VerificationConfig,
            "dns": DNSConfig,
            "activation": ActivationConfig,
            "server": ServerConfig,
        }
        kwargs: dict[str, Any] = {}
        for section, model in sections.items():
            fields = model.model_fields
            picked: dict[str, Any] = {}
            for key, value in values.items():
                name = key.removeprefix(f"{section}_")
                if name in fields:
                    picked[name] = value
                elif key in fields:
                    picked[key] = value
            kwargs[section] = model(**picked)
        return cls(**kwargs)

    @property
    def activation_target(self) -> str:
        return self.activation.activation_target or self.verification.platform_domain

    def to_display_dict(self) -> dict[str, Any]:
        """Export configuration for display, secrets masked."""
        data = self.model_dump()
        if data["activation"].get("provisioner_secret"):
            data["activation"]["provisioner_secret"] = "********"
        return data


_config: HostclaimConfig | None = None


def get_config() -> HostclaimConfig:
    """Get the global configuration instance.

    Returns a cached instance of HostclaimConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = HostclaimConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
