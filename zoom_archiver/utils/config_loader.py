"""Configuration loader for zoom-archiver."""

import logging
import os
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Handles loading and validation of configuration files.

    Values from the YAML file can be overridden by environment variables,
    which is how the Zoom credentials are normally supplied.
    """

    DEFAULT_CONFIG_PATHS: ClassVar[List[str]] = [
        "config.yaml",
        os.path.expanduser("~/.config/zoom-archiver/config.yaml"),
    ]

    ENV_OVERRIDES: ClassVar[Dict[str, str]] = {
        "zoom.account_id": "ZOOM_ACCOUNT_ID",
        "zoom.client_id": "ZOOM_CLIENT_ID",
        "zoom.client_secret": "ZOOM_CLIENT_SECRET",
        "zoom.user_id": "ZOOM_USER_ID",
        "enable_action_items": "ENABLE_ACTION_ITEMS",
        "max_meetings_per_run": "MAX_MEETINGS_PER_RUN",
    }

    REQUIRED_ZOOM_FIELDS: ClassVar[List[str]] = ["account_id", "client_id", "client_secret"]

    MAX_MEETINGS_RANGE = (1, 1000)

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the configuration loader.

        Args:
            config_path: Optional path to config file. If not provided, searches default locations.
        """
        self.config_path = self._find_config(config_path)
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _find_config(self, config_path: Optional[str] = None) -> Path:
        """Find the configuration file.

        Args:
            config_path: Optional explicit path to config file.

        Returns:
            Path to the configuration file.

        Raises:
            FileNotFoundError: If no configuration file is found.
        """
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            return path

        for default_path in self.DEFAULT_CONFIG_PATHS:
            path = Path(default_path)
            if path.exists():
                logger.info(f"Using config file: {path}")
                return path

        raise FileNotFoundError(
            f"No config file found. Searched: {self.DEFAULT_CONFIG_PATHS}. "
            "Please create a config.yaml file or specify --config."
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load the YAML configuration file.

        Returns:
            Dictionary containing configuration values.

        Raises:
            ValueError: If the config file is malformed.
        """
        try:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}") from e

        if config is None:
            raise ValueError("Config file is empty")
        if not isinstance(config, dict):
            raise ValueError("Config file must contain a mapping")

        return config

    def _apply_env_overrides(self) -> None:
        for key, env_var in self.ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is None or value == "":
                continue

            section = self.config
            *parents, leaf = key.split(".")
            for parent in parents:
                if not isinstance(section.get(parent), dict):
                    section[parent] = {}
                section = section[parent]
            section[leaf] = yaml.safe_load(value) if leaf in ("enable_action_items", "max_meetings_per_run") else value
            logger.debug(f"Using {env_var} for {key}")

    def _validate_config(self) -> None:
        """Validate required configuration fields.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        required_fields = ["obsidian_vault_path", "output_folder"]

        for field in required_fields:
            if field not in self.config:
                raise ValueError(f"Missing required config field: {field}")

        # Validate vault path exists
        vault_path = Path(self.config["obsidian_vault_path"]).expanduser()
        if not vault_path.exists():
            raise ValueError(f"Obsidian vault path does not exist: {vault_path}")

        if not vault_path.is_dir():
            raise ValueError(f"Obsidian vault path is not a directory: {vault_path}")

        zoom_config = self.get_zoom_config()
        missing = [field for field in self.REQUIRED_ZOOM_FIELDS if not zoom_config.get(field)]
        if missing:
            env_names = ", ".join(self.ENV_OVERRIDES[f"zoom.{field}"] for field in missing)
            raise ValueError(f"Missing Zoom credentials: {', '.join(missing)} (set in config or via {env_names})")

        max_meetings = self.get("max_meetings_per_run", 100)
        low, high = self.MAX_MEETINGS_RANGE
        if not isinstance(max_meetings, int) or isinstance(max_meetings, bool) or not low <= max_meetings <= high:
            raise ValueError(f"max_meetings_per_run must be an integer between {low} and {high}")

        if not isinstance(self.get("enable_action_items", True), bool):
            raise ValueError("enable_action_items must be true or false")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Configuration key (supports dot notation for nested values).
            default: Default value if key is not found.

        Returns:
            Configuration value or default.
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def get_vault_path(self) -> Path:
        """Get the Obsidian vault path."""
        return Path(self.config["obsidian_vault_path"]).expanduser()

    def get_output_path(self) -> Path:
        """Get the full output path within the vault."""
        return self.get_vault_path() / self.config["output_folder"]

    def get_zoom_config(self) -> Dict[str, Any]:
        """Get the ``zoom`` section (credentials, user, recording toggle)."""
        zoom_config = self.config.get("zoom") or {}
        return zoom_config if isinstance(zoom_config, dict) else {}

    def get_state_db_path(self) -> str:
        return str(self.get("state_db", "meetings_state.db"))

    def action_items_enabled(self) -> bool:
        return self.get("enable_action_items", True)

    def get_max_meetings_per_run(self) -> int:
        return self.get("max_meetings_per_run", 100)

    def get_lookback_days(self) -> int:
        return int(self.get("initial_lookback_days", 150))
