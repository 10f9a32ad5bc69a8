"""3-layer configuration system for Infra Shield Tools.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (.infrashield/config.yaml)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "project": {
        "name": "",
    },
    "license": {
        "secret_env": "IST_LICENSE_SECRET",
        "signature_length": 32,
        "watermark_length": 24,
        "license_id_prefix": "IST",
        "direct_validity_days": 365,
        "vendor_name": "INFRA SHIELD TOOLS",
        "vendor_url": "https://ist-security.fr",
    },
    "platforms": {},
    "store": {
        "filename": "store.yaml",
    },
    "email": {
        "provider": "resend",
        "api_url": "https://api.resend.com/emails",
        "api_key_env": "RESEND_API_KEY",
        "from_email": "Infra Shield Tools <licences@ist-security.fr>",
        "timeout_seconds": 30,
        "retry_attempts": 3,
        "retry_delay_seconds": 2,
    },
}


class ConfigError(ValueError):
    """Configuration is missing or invalid. Raised at startup."""


@dataclass(frozen=True)
class LicenseSettings:
    signature_length: int = 32
    watermark_length: int = 24
    license_id_prefix: str = "IST"
    direct_validity_days: int = 365
    vendor_name: str = "INFRA SHIELD TOOLS"
    vendor_url: str = "https://ist-security.fr"


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def config_dir(project_path: Path) -> Path:
    return project_path / ".infrashield"


def load_project_config(project_path: Path) -> dict:
    """Load project configuration from .infrashield/config.yaml."""
    config_path = config_dir(project_path) / "config.yaml"
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return data


def get_effective_config(
    project_path: Path,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration for a project."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    project_config = load_project_config(project_path)
    if project_config:
        config = deep_merge(config, project_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    config["_project_path"] = str(project_path)
    return config


def get_license_settings(config: dict) -> LicenseSettings:
    """Typed view of the license section."""
    section = config.get("license") or {}
    defaults = LicenseSettings()
    try:
        return LicenseSettings(
            signature_length=int(section.get("signature_length", defaults.signature_length)),
            watermark_length=int(section.get("watermark_length", defaults.watermark_length)),
            license_id_prefix=str(section.get("license_id_prefix", defaults.license_id_prefix)),
            direct_validity_days=int(section.get("direct_validity_days", defaults.direct_validity_days)),
            vendor_name=str(section.get("vendor_name", defaults.vendor_name)),
            vendor_url=str(section.get("vendor_url", defaults.vendor_url)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid license settings: {e}") from e


def get_license_secret(config: dict) -> bytes:
    """Read the license signing secret from the configured env var.

    Raises:
        ConfigError: if the variable is unset or empty.
    """
    env_var = (config.get("license") or {}).get("secret_env", "IST_LICENSE_SECRET")
    secret = os.environ.get(env_var, "")
    if not secret:
        raise ConfigError(f"License secret not found in environment variable: {env_var}")
    return secret.encode("utf-8")


def get_platform_overrides(config: dict) -> dict[str, list[str]]:
    platforms = config.get("platforms") or {}
    if not isinstance(platforms, dict):
        raise ConfigError("'platforms' must map platform labels to standard id lists")
    return {str(k): list(v or []) for k, v in platforms.items()}
