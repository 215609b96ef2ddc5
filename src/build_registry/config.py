"""Configuration loading for the build registry."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from build_registry.constants import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_LIMIT,
    DEFAULT_LOCALE,
    DEFAULT_PREFIX,
)


@dataclass
class CdnConfig:
    """Content store settings for one environment."""
    url: str
    check: Optional[str] = None
    prefix: Optional[str] = None


@dataclass
class RegistryConfig:
    """Application configuration loaded from environment and YAML."""

    database_url: str
    redis_url: str
    envs: List[str] = field(default_factory=list)
    cdn: Dict[str, CdnConfig] = field(default_factory=dict)
    prefix: str = DEFAULT_PREFIX
    limit: int = DEFAULT_LIMIT
    default_locale: str = DEFAULT_LOCALE


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""
    pass


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def parse_registry_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate the structured part of the registry configuration.

    Args:
        data: Parsed YAML mapping

    Returns:
        Keyword arguments for RegistryConfig (minus connection URLs)

    Raises:
        ConfigError: If `envs` is not a list or a cdn entry lacks a url
    """
    cdn_raw = data.get("cdn") or {}
    envs = data.get("envs")
    if envs is None:
        envs = list(cdn_raw)
    if not isinstance(envs, list):
        raise ConfigError("envs must be a list")

    cdn = {}
    for env, settings in cdn_raw.items():
        settings = settings or {}
        if not settings.get("url"):
            raise ConfigError(f"cdn.{env}.url is required")
        cdn[env] = CdnConfig(
            url=settings["url"],
            check=settings.get("check"),
            prefix=settings.get("prefix"),
        )

    return {
        "envs": envs,
        "cdn": cdn,
        "prefix": data.get("prefix") or DEFAULT_PREFIX,
        "limit": int(data.get("limit") or DEFAULT_LIMIT),
        "default_locale": data.get("default_locale") or DEFAULT_LOCALE,
    }


def load_config(
    require_all: bool = True,
    config_path: Optional[str] = None,
) -> Optional[RegistryConfig]:
    """
    Load configuration from environment variables and the registry YAML.

    Args:
        require_all: If True, raises ConfigError if required vars are missing.
                     If False, returns None for missing config.
        config_path: YAML file to read (default: BFFS_CONFIG or bffs.yml)

    Returns:
        RegistryConfig if all required vars present, None if require_all=False and missing.

    Raises:
        ConfigError: If require_all=True and required vars are missing.
    """
    load_dotenv()

    database_url = os.environ.get("DATABASE_URL")
    redis_url = os.environ.get("REDIS_URL")

    missing = []
    if not database_url:
        missing.append("DATABASE_URL")
    if not redis_url:
        missing.append("REDIS_URL")

    if missing:
        if require_all:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                f"Please set them in your environment or create a .env file."
            )
        return None

    path = Path(config_path or os.environ.get("BFFS_CONFIG") or DEFAULT_CONFIG_PATH)
    data = _read_yaml(path) if path.exists() else {}

    return RegistryConfig(
        database_url=database_url,
        redis_url=redis_url,
        **parse_registry_settings(data),
    )


def load_build_config(path: Path) -> Dict[str, Any]:
    """
    Load a package's build config.

    Expected shape: `files: {env: [filename, ...]}`.
    """
    data = _read_yaml(path)
    files = data.get("files") or {}
    if not isinstance(files, dict):
        raise ConfigError(f"files in {path} must map environments to file lists")
    return {"files": files}
