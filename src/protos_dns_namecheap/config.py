"""Configuration loading and validation."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("/etc/protos-dns-namecheap/config.yaml")


class NamecheapConfig(BaseModel):
    """Namecheap API configuration."""

    username: str = Field(description="Namecheap account username")
    api_user: str = Field(description="Namecheap API user")
    token: str = Field(description="Namecheap API key")
    domain: str = Field(description="Managed domain (e.g., example.com)")
    client_ip: str = Field(
        default="127.0.0.1", description="Whitelisted client IP sent with every API call"
    )
    sandbox: bool = Field(default=False, description="Use the Namecheap sandbox API")


class ProtosConfig(BaseModel):
    """Protos orchestration service configuration."""

    url: str = Field(default="http://protos:8080/", description="Base URL of the Protos API")
    app_id: str = Field(description="Application ID used to authenticate against Protos")


class SettingsConfig(BaseModel):
    """Application settings."""

    interval: int = Field(default=30, description="Interval between cycles in seconds")
    log_level: str = Field(default="info", description="debug, info, warning or error")
    resolver: str = Field(default="8.8.8.8", description="Public resolver used for verification")
    dns_timeout: float = Field(default=5.0, description="DNS query timeout in seconds")
    verify_delay: float = Field(
        default=10.0, description="Seconds between propagation checks after a write"
    )
    verify_backoff: float = Field(
        default=1.0, ge=1.0, description="Multiplier applied to verify_delay after each attempt"
    )
    verify_max_delay: float = Field(
        default=120.0, description="Upper bound for the delay between propagation checks"
    )
    max_verify_attempts: int | None = Field(
        default=None, ge=1, description="Give up verification after this many checks (unbounded)"
    )
    health_port: int | None = Field(
        default=None, description="HTTP health endpoint port (optional)"
    )


class Config(BaseModel):
    """Root configuration."""

    namecheap: NamecheapConfig
    protos: ProtosConfig
    settings: SettingsConfig = Field(default_factory=SettingsConfig)


def _substitute_env_vars(value: str) -> str:
    """Substitute ${VAR_NAME} patterns with environment variables."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(f"Environment variable '{var_name}' not set")
        return env_value

    return pattern.sub(replacer, value)


def _process_env_vars(obj: object) -> object:
    """Recursively process environment variable substitution in a data structure."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_env_vars(item) for item in obj]
    return obj


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open() as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    # Substitute environment variables
    return _process_env_vars(raw_config)  # type: ignore[return-value]


def load_config(path: Path) -> Config:
    """Load and validate configuration from a YAML file."""
    return Config.model_validate(_read_config_file(path))


# (section, key, environment variable)
ENV_VARS: list[tuple[str, str, str]] = [
    ("namecheap", "username", "NAMECHEAP_USERNAME"),
    ("namecheap", "api_user", "NAMECHEAP_API_USER"),
    ("namecheap", "token", "NAMECHEAP_TOKEN"),
    ("namecheap", "domain", "NAMECHEAP_DOMAIN"),
    ("namecheap", "client_ip", "NAMECHEAP_CLIENT_IP"),
    ("namecheap", "sandbox", "NAMECHEAP_SANDBOX"),
    ("protos", "url", "PROTOS_URL"),
    ("protos", "app_id", "PROTOS_APPID"),
    ("settings", "interval", "INTERVAL"),
    ("settings", "log_level", "LOG_LEVEL"),
    ("settings", "resolver", "DNS_RESOLVER"),
    ("settings", "verify_delay", "VERIFY_DELAY"),
    ("settings", "max_verify_attempts", "MAX_VERIFY_ATTEMPTS"),
    ("settings", "health_port", "HEALTH_PORT"),
]


def config_from_env() -> dict[str, dict[str, str]]:
    """Collect configuration values set in the environment.

    Only variables that are set (and non-empty) are returned; pydantic
    converts the strings when the final Config is validated.

    Recognised environment variables:
        NAMECHEAP_USERNAME, NAMECHEAP_API_USER, NAMECHEAP_TOKEN, NAMECHEAP_DOMAIN:
            Registrar account, credentials and managed domain (required)
        PROTOS_APPID: Protos application ID (required)
        NAMECHEAP_CLIENT_IP, NAMECHEAP_SANDBOX, PROTOS_URL, INTERVAL, LOG_LEVEL,
        DNS_RESOLVER, VERIFY_DELAY, MAX_VERIFY_ATTEMPTS, HEALTH_PORT: optional
    """
    result: dict[str, dict[str, str]] = {}
    for section, key, env_name in ENV_VARS:
        value = os.environ.get(env_name)
        if value:
            result.setdefault(section, {})[key] = value
    return result


def merge_config(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge section-level overrides into a raw config mapping."""
    merged = {section: dict(values or {}) for section, values in base.items()}
    for section, values in overrides.items():
        merged.setdefault(section, {}).update(
            {key: value for key, value in values.items() if value is not None}
        )
    return merged


def load_config_auto(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, str]:
    """Load configuration from file, environment and explicit overrides.

    Precedence, lowest first: YAML file, environment variables, overrides
    (the command line flags).

    Args:
        path: Config file; DEFAULT_CONFIG_PATH is used when None and it exists
        overrides: Section-keyed values taking precedence over everything else

    Returns:
        The validated Config and a description of the sources used
    """
    sources: list[str] = []
    raw: dict[str, Any] = {}

    if path is None and DEFAULT_CONFIG_PATH.exists():
        path = DEFAULT_CONFIG_PATH
    if path is not None:
        raw = _read_config_file(path)
        sources.append(str(path))

    env = config_from_env()
    if env:
        raw = merge_config(raw, env)
        sources.append("environment")

    if overrides:
        raw = merge_config(raw, overrides)
        sources.append("command line")

    return Config.model_validate(raw), "+".join(sources) or "defaults"
