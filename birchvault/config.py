# config.py
# Description: Configuration loading for BirchVault
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional, Union
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Functions:

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "birchvault" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "birchvault"

ENV_API_URL = "BIRCHVAULT_API_URL"
ENV_ANON_KEY = "BIRCHVAULT_ANON_KEY"

CONFIG_TOML_CONTENT = """
# Configuration for BirchVault
# This file is created with defaults on first run. Edit values as needed.

[api]
# Backend base URL and public (anon) API key.
# BIRCHVAULT_API_URL and BIRCHVAULT_ANON_KEY environment variables override these.
url = "http://localhost:54321"
anon_key = ""
auth_path = "/auth/v1"
rest_path = "/rest/v1"
request_timeout_seconds = 30

[sync]
# Access tokens are refreshed this many seconds before they expire.
token_refresh_skew_seconds = 300
auto_sync_enabled = true
auto_sync_interval_seconds = 60

[database]
vault_db_path = "~/.local/share/birchvault/birchvault.db"

[logging]
# Log file is placed in the same directory as the vault database.
log_filename = "birchvault.log"
log_level = "INFO"
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5
"""

DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    api_section = config.setdefault("api", {})
    env_url = os.environ.get(ENV_API_URL)
    if env_url:
        api_section["url"] = env_url
        logger.debug(f"API url overridden from {ENV_API_URL}")
    env_key = os.environ.get(ENV_ANON_KEY)
    if env_key:
        api_section["anon_key"] = env_key
        logger.debug(f"API anon key overridden from {ENV_ANON_KEY}")
    return config


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(config_path: Optional[Union[str, Path]] = None, force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/birchvault/config.toml (or `config_path`), merged over
    the built-in defaults. If the file doesn't exist, it's created with default values.
    A file that fails to parse is ignored and the defaults are used.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    loaded_config = _apply_env_overrides(loaded_config)
    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return loaded_config


# --- Setting Getter ---
def get_setting(section: str, key: str, default: Any = None, settings: Optional[Dict[str, Any]] = None) -> Any:
    """Helper to get a specific setting from the given (or the cached) configuration."""
    config = settings if settings is not None else load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


# --- Path Getters ---
def get_vault_db_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    default_db_path_str = str(BASE_DATA_DIR / "birchvault.db")
    db_path_str = get_setting("database", "vault_db_path", default_db_path_str, settings)
    return Path(db_path_str).expanduser().resolve()


def get_log_file_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    log_filename = get_setting("logging", "log_filename", "birchvault.log", settings)
    return get_vault_db_path(settings).parent / log_filename


def get_api_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """The [api] section with defaults filled in and numeric values coerced."""
    api = dict(DEFAULT_CONFIG_FROM_TOML["api"])
    config = settings if settings is not None else load_settings()
    api.update(config.get("api", {}) or {})
    try:
        api["request_timeout_seconds"] = float(api["request_timeout_seconds"])
    except (TypeError, ValueError):
        logger.warning(f"Invalid request_timeout_seconds '{api['request_timeout_seconds']}'. Using 30.")
        api["request_timeout_seconds"] = 30.0
    return api


def get_sync_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    sync = dict(DEFAULT_CONFIG_FROM_TOML["sync"])
    config = settings if settings is not None else load_settings()
    sync.update(config.get("sync", {}) or {})
    for key in ("token_refresh_skew_seconds", "auto_sync_interval_seconds"):
        try:
            sync[key] = int(sync[key])
        except (TypeError, ValueError):
            logger.warning(f"Invalid [sync] {key} '{sync[key]}'. Using default.")
            sync[key] = DEFAULT_CONFIG_FROM_TOML["sync"][key]
    sync["auto_sync_enabled"] = bool(sync.get("auto_sync_enabled", True))
    return sync

#
# End of config.py
#######################################################################################################################
