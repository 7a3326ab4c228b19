"""
Configuration Module for the Ghost Admin API gateway.

This module provides configuration loading and management for the gateway.
Configuration is loaded from config.yml and supports Docker secrets and a
small set of environment variable overrides.

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> max_bytes = config["uploads"]["max_upload_bytes"]
"""
import copy
import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


logger = logging.getLogger(__name__)
DEFAULT_TIMEZONE = "UTC"

# 4.5 MB, the request body ceiling of the serverless platform uploads were
# originally sized for
DEFAULT_MAX_UPLOAD_BYTES = int(4.5 * 1024 * 1024)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.yml file.

    Values missing from the file are filled in from get_default_config(),
    so callers can index nested sections without guarding every level.

    Args:
        config_path: Path to config.yml file. If None, looks in current directory
                    and parent directories.

    Returns:
        Dictionary containing configuration settings

    Example:
        >>> config = load_config()
        >>> config["ghost"]["version"]
        '5.120.3'
    """
    if config_path is None:
        # Try to find config.yml in current directory or parent directories
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            candidate = parent / "config.yml"
            if candidate.exists():
                config_path = str(candidate)
                break

        # If still not found, check the project root (where this file is located)
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            candidate = project_root / "config.yml"
            if candidate.exists():
                config_path = str(candidate)

    if config_path is None:
        logger.warning("config.yml not found, using default configuration")
        return apply_env_overrides(get_default_config())

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
            if not isinstance(config, dict):
                logger.warning("Configuration root must be a mapping, using default configuration")
                return apply_env_overrides(get_default_config())
            config = merge_with_defaults(config)
            # Validate timezone at load time to keep behavior consistent everywhere.
            config["timezone"] = get_timezone_name(config)
            logger.info(f"Loaded configuration from {config_path}")
            return apply_env_overrides(config)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}")
        return apply_env_overrides(get_default_config())
    except yaml.YAMLError as e:
        logger.error(f"Error parsing configuration file: {e}")
        return apply_env_overrides(get_default_config())


def get_default_config() -> Dict[str, Any]:
    """Return default configuration when config.yml is not available.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "timezone": DEFAULT_TIMEZONE,
        "ghost": {
            "version": "5.120.3",
            "base_domain": "from.cafe",
        },
        "storage": {
            "database_path": "./data/gateway.db",
            "blob_directory": "./data/blobs",
            "public_base_url": "http://localhost:5000",
        },
        "uploads": {
            "max_upload_bytes": DEFAULT_MAX_UPLOAD_BYTES,
            "max_request_bytes": 10 * 1024 * 1024,
            "max_chunks": 1000,
            "session_ttl_seconds": 3600,
            "chunk_store": "sqlite",
        },
        "auth": {
            "jwt_leeway_seconds": 30,
        },
        "cors": {
            "enabled": True,
            "origins": ["*"],
        },
    }


def merge_with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay a loaded configuration on top of the defaults, one level deep."""
    merged = get_default_config()
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            section = copy.deepcopy(merged[key])
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return merged


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides (GATEWAY_DATABASE_PATH, GATEWAY_BLOB_DIRECTORY)."""
    database_path = os.environ.get("GATEWAY_DATABASE_PATH")
    if database_path:
        config.setdefault("storage", {})["database_path"] = database_path
    blob_directory = os.environ.get("GATEWAY_BLOB_DIRECTORY")
    if blob_directory:
        config.setdefault("storage", {})["blob_directory"] = blob_directory
    return config


def get_timezone_name(config: Dict[str, Any]) -> str:
    """Return a validated timezone name from config, with UTC fallback."""
    tz_name = config.get("timezone", DEFAULT_TIMEZONE)
    if not isinstance(tz_name, str) or not tz_name.strip():
        logger.warning(f"Invalid timezone configuration {tz_name!r}; falling back to {DEFAULT_TIMEZONE}")
        return DEFAULT_TIMEZONE

    tz_name = tz_name.strip()
    try:
        ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown timezone '{tz_name}'; falling back to {DEFAULT_TIMEZONE}")
        return DEFAULT_TIMEZONE

    return tz_name


def read_secret_file(filepath: str) -> Optional[str]:
    """Read a Docker secret from a file.

    Docker secrets are mounted as files in /run/secrets/ directory.
    This function reads the content of the secret file.

    Args:
        filepath: Path to the secret file

    Returns:
        Content of the secret file (stripped of whitespace), or None if file doesn't exist

    Example:
        >>> base_url = read_secret_file("/run/secrets/gateway_public_base_url")
    """
    try:
        with open(filepath, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        logger.debug(f"Secret file not found: {filepath}")
        return None
    except OSError as e:
        logger.error(f"Error reading secret file {filepath}: {e}")
        return None


def get_public_base_url(config: Dict[str, Any]) -> str:
    """Return the public base URL for stored images.

    Priority: storage.public_base_url_file (Docker secret) > storage.public_base_url.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        Base URL without a trailing slash
    """
    storage = config.get("storage", {})
    base_url = None
    secret_file = storage.get("public_base_url_file")
    if secret_file:
        base_url = read_secret_file(secret_file)
    if not base_url:
        base_url = storage.get("public_base_url") or get_default_config()["storage"]["public_base_url"]
    return base_url.rstrip("/")
