"""Configuration loader.

Reads config.yaml, lets a handful of environment variables override the
endpoint settings, validates the result against the Pydantic schema and
caches it for the life of the process.

Environment overrides (applied after the file is read):
    RSC_BASE_URL   -> rsc.base_url
    RSC_CLIENT_ID  -> rsc.client_id

Usage:
    from m365_recovery.config import get_config

    config = get_config()
    print(config.rsc.base_url)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from m365_recovery.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from m365_recovery.core.errors import ConfigLoadError, ConfigValidationError

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "M365_RECOVERY_CONFIG_PATH"

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "RSC_BASE_URL": ("rsc", "base_url"),
    "RSC_CLIENT_ID": ("rsc", "client_id"),
}

_ERROR_TEMPLATES = {
    "missing": "Missing required field '{field}'",
    "string_type": "Field '{field}' must be a string",
    "int_type": "Field '{field}' must be an integer",
    "int_parsing": "Field '{field}' must be an integer",
    "float_parsing": "Field '{field}' must be a number",
    "bool_parsing": "Field '{field}' must be true or false",
    "extra_forbidden": "Unknown field '{field}'",
}

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def config_path_from_env() -> Path:
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _describe_errors(error: ValidationError) -> str:
    """One actionable line per failing field."""
    lines = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"])
        template = _ERROR_TEMPLATES.get(err["type"], "Field '{field}': {msg}")
        lines.append("  - " + template.format(field=field, msg=err["msg"]))
    return "\n".join(lines)


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy config/config.yaml.example to {path} and fill in rsc.base_url"
        )
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay ENV_OVERRIDES onto the raw mapping in place."""
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        block = data.get(section)
        if not isinstance(block, dict):
            block = data[section] = {}
        block[key] = value


def load_config(path: Path | None = None) -> AppConfig:
    """Load, override and validate the configuration. Always reads from disk.

    Raises:
        ConfigLoadError: If the file is missing or is not a YAML mapping
        ConfigValidationError: If the schema rejects it or its version is too new
    """
    config_path = path or config_path_from_env()
    data = _read_mapping(config_path)
    _apply_env_overrides(data)

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {config_path}:\n{_describe_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Upgrade m365-recovery or lower schema_version."
        )

    return config


def get_config() -> AppConfig:
    """Return the cached configuration, loading it on first use."""
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config()
        return _current_config


def _auth_summary(config: AppConfig) -> tuple[str, str | None]:
    """Describe which credential source will be used, or why none will work."""
    rsc = config.rsc
    if os.environ.get(rsc.access_token_env):
        return f"static token from ${rsc.access_token_env}", None
    if not rsc.client_id:
        return "service account", "rsc.client_id is required for service account auth"
    return f"service account {rsc.client_id}", None


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without touching the cache.

    Returns:
        Tuple of (is_valid, message). A missing client secret is reported as
        a warning only: it may be exported later by the job runner.
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    auth, problem = _auth_summary(config)
    if problem:
        return (False, f"Validation error: {problem}")

    lines = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - endpoint: {config.rsc.base_url}",
        f"  - auth: {auth}",
        f"  - poll every {config.polling.interval_seconds:g}s, "
        f"give up after {config.polling.timeout_minutes} minutes",
    ]
    if auth.startswith("service account") and not os.environ.get(config.rsc.client_secret_env):
        lines.append(f"  - warning: ${config.rsc.client_secret_env} is not set")
    return (True, "\n".join(lines))


def reset_config() -> None:
    """Drop the cached configuration (tests use this between cases)."""
    global _current_config
    with _config_lock:
        _current_config = None
