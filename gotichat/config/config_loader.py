"""
ConfigLoader for YAML-based configuration with environment variable interpolation.
"""

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml

# Define logger
logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    "gotify": {
        "url": "",
        "admin_username": "",
        "admin_password": "",
        "timeout": 10.0,
    },
    "gateway": {
        "dedup_ttl": 5.0,
        "dedup_sweep_interval": 10.0,
        "default_list_limit": 50,
        "token_cache_size": 256,
        "application_markers": ["Web App", "Web Client", "Message App"],
        "client_markers": ["Gotify Web Client", "Web Client"],
        "client_name": "Gotify Web Client",
    },
    "live": {
        "max_reconnect_attempts": 5,
        "reconnect_base_delay": 1.0,
    },
    "session": {
        "blob_path": "~/.config/gotichat/session.json",
        "key": "",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8000,
        "echo_credentials": True,
        "cors_origins": ["*"],
    },
    "logging": {
        "level": "INFO",
        "json": True,
    },
}


class ConfigLoader:
    """
    Loads and manages YAML configuration with environment variable interpolation.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Optional explicit path to config.yaml
        """
        self.env = os.getenv("GOTICHAT_ENV", "").strip().lower() or None
        self.config_path = self._find_config_path(config_path)
        self.schema_path = Path(__file__).parent / "schema" / "config_schema.json"
        self.config = self._load_config()
        env_label = self.env or "production"
        logger.debug(f"ConfigLoader: env={env_label}, config={self.config_path}")

    def _find_config_path(self, config_path: Optional[Union[str, Path]] = None) -> Path:
        """
        Find the configuration file path.

        Looks in the following locations (in order):
        1. Explicit path provided to constructor
        2. Path specified by the GOTICHAT_CONFIG environment variable
        3. Current working directory
        4. User's config directory (~/.config/gotichat/)
        5. Project root directory

        When ``GOTICHAT_ENV`` is set (e.g. ``dev``), each directory is first
        checked for ``config.{env}.yaml`` before falling back to ``config.yaml``.

        Args:
            config_path: Optional explicit path to config.yaml

        Returns:
            Path to the configuration file (which may not exist)
        """
        if config_path:
            path = Path(config_path)
            if path.exists():
                return path
            logger.warning(f"Specified config path does not exist: {path}")

        env_path = os.getenv("GOTICHAT_CONFIG")
        if env_path:
            path = Path(env_path)
            if path.exists():
                return path
            logger.warning(f"Config path from environment variable does not exist: {path}")

        candidates: List[str] = []
        if self.env:
            candidates.append(f"config.{self.env}.yaml")
        candidates.append("config.yaml")

        search_dirs = [
            Path.cwd(),
            Path.home() / ".config" / "gotichat",
            Path(__file__).parent.parent.parent,
        ]
        for directory in search_dirs:
            for name in candidates:
                path = directory / name
                if path.exists():
                    return path

        logger.debug("No config.yaml found. Using defaults and environment variables.")
        return search_dirs[-1] / "config.yaml"

    def _load_schema(self) -> Dict[str, Any]:
        """
        Load the JSON schema for validation.

        Returns:
            Dictionary containing the JSON schema
        """
        if not self.schema_path.exists():
            logger.warning(f"Schema file not found: {self.schema_path}")
            return {}

        with open(self.schema_path, "r") as f:
            return json.load(f)

    def _interpolate_env_vars(self, value: Any) -> Any:
        """
        Recursively interpolate environment variables in configuration values.

        Replaces "${ENV_VAR}" or "$ENV_VAR" with the value of the environment
        variable, or an empty string when it is unset.
        """
        if isinstance(value, str):
            pattern = r"\${([^}]+)}|\$([a-zA-Z0-9_]+)"

            def replace_env_var(match):
                env_var = match.group(1) or match.group(2)
                return os.environ.get(env_var, "")

            return re.sub(pattern, replace_env_var, value)
        elif isinstance(value, list):
            return [self._interpolate_env_vars(item) for item in value]
        elif isinstance(value, dict):
            return {k: self._interpolate_env_vars(v) for k, v in value.items()}
        else:
            return value

    def _validate_config(self, config: Dict[str, Any], schema: Dict[str, Any]) -> None:
        """
        Validate the configuration against the schema.

        Raises:
            ConfigError: If validation fails
        """
        if not schema:
            return

        try:
            jsonschema.validate(instance=config, schema=schema)
        except jsonschema.exceptions.ValidationError as e:
            path = " -> ".join([str(p) for p in e.path])
            message = f"Configuration validation error: {e.message}"
            if path:
                message = f"{message} (at {path})"
            raise ConfigError(message) from e

    def _load_config(self) -> Dict[str, Any]:
        """
        Load, validate and merge the configuration file over the defaults.

        Raises:
            ConfigError: If the configuration file cannot be loaded or is invalid
        """
        defaults = copy.deepcopy(DEFAULT_CONFIG)
        if not self.config_path.exists():
            return defaults

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            error_msg = f"Error parsing {self.config_path}: {e}"
            logger.error(error_msg)
            raise ConfigError(error_msg) from e
        except OSError as e:
            error_msg = f"Error reading {self.config_path}: {e}"
            logger.error(error_msg)
            raise ConfigError(error_msg) from e

        config = self._interpolate_env_vars(config)
        self._validate_config(config, self._load_schema())
        return self._deep_merge(defaults, config)

    def _deep_merge(
        self, base: Dict[str, Any], overlay: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Deep-merge *overlay* into *base* (overlay wins on leaf conflicts)."""
        merged = dict(base)
        for key, value in overlay.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def get_config(self) -> Dict[str, Any]:
        """Get the full configuration."""
        return self.config

    def get_gotify_config(self) -> Dict[str, Any]:
        """
        Get the Gotify server configuration.

        Empty values fall back to GOTIFY_URL / GOTIFY_ADMIN_USERNAME /
        GOTIFY_ADMIN_PASSWORD environment variables.
        """
        cfg = dict(self.config.get("gotify", {}))
        cfg["url"] = (cfg.get("url") or os.environ.get("GOTIFY_URL") or "").rstrip("/")
        cfg["admin_username"] = (
            cfg.get("admin_username") or os.environ.get("GOTIFY_ADMIN_USERNAME") or ""
        )
        cfg["admin_password"] = (
            cfg.get("admin_password") or os.environ.get("GOTIFY_ADMIN_PASSWORD") or ""
        )
        cfg["timeout"] = float(cfg.get("timeout") or 10.0)
        return cfg

    def get_gateway_config(self) -> Dict[str, Any]:
        """Get the message gateway configuration section."""
        return self.config.get("gateway", {})

    def get_live_config(self) -> Dict[str, Any]:
        """Get the live update (stream) configuration section."""
        return self.config.get("live", {})

    def get_session_config(self) -> Dict[str, Any]:
        """
        Get the local session persistence configuration.

        An empty ``key`` falls back to the GOTICHAT_SESSION_KEY environment
        variable.
        """
        cfg = dict(self.config.get("session", {}))
        cfg["blob_path"] = str(Path(cfg.get("blob_path") or DEFAULT_CONFIG["session"]["blob_path"]).expanduser())
        cfg["key"] = cfg.get("key") or os.environ.get("GOTICHAT_SESSION_KEY") or ""
        return cfg

    def get_server_config(self) -> Dict[str, Any]:
        """Get the proxy server configuration section."""
        return self.config.get("server", {})

    def get_logging_config(self) -> Dict[str, Any]:
        """Get the logging configuration section."""
        return self.config.get("logging", {})


# Create a singleton instance
config_loader = ConfigLoader()
