"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mclaunch_cli.exceptions import ConfigurationError
from mclaunch_cli.models.config import DEFAULT_MANIFEST_URL, LauncherConfig

log = logging.getLogger(__name__)

CLIENT_ID_ENV = "MS_CLIENT_ID"


def _to_ini(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> LauncherConfig:
        """
        Loads configuration from the INI file, applies environment and CLI
        overrides, and validates it.

        A missing file is not an error: every setting falls back to its default.

        Args:
            cli_options: A dictionary of options provided via the command line.
                ``None`` values are ignored.

        Returns:
            A validated LauncherConfig object.

        Raises:
            ConfigurationError: If the config file cannot be parsed or validation
            fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            config_from_file = self._get_config_as_dict()
        else:
            log.debug(f"No configuration file at '{self.config_file_path}', using defaults.")

        if env_client_id := os.environ.get(CLIENT_ID_ENV, "").strip():
            config_from_file["client_id"] = env_client_id

        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )

        try:
            config_dir = self.config_file_path.parent
            return LauncherConfig(**config_from_file, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save; every other key gets
                its default value.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        defaults = LauncherConfig.model_construct()
        for key in sorted(LauncherConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if value is not None:
                config["DEFAULT"][key] = _to_ini(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        try:
            return {
                "client_id": section.get("client_id", ""),
                "redirect_port": section.getint("redirect_port", 8080),
                "open_browser": section.getboolean("open_browser", True),
                "safety_margin": section.getint("safety_margin", 300),
                "auth_attempts": section.getint("auth_attempts", 3),
                "max_workers": section.getint("max_workers", 16),
                "download_attempts": section.getint("download_attempts", 3),
                "retry_base_delay": section.getfloat("retry_base_delay", 1.5),
                "manifest_url": section.get("manifest_url", DEFAULT_MANIFEST_URL),
                "manifest_cache_hours": section.getint("manifest_cache_hours", 1),
                "game_dir": section.get("game_dir", ""),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = LauncherConfig.model_construct()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(LauncherConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _to_ini(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
