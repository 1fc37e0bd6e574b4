"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from tunefetch.exceptions import ConfigurationError
from tunefetch.models.config import ServerConfig

log = logging.getLogger(__name__)

ENV_PREFIX = "TUNEFETCH_"


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "tunefetch"


DEFAULT_CONFIG_FILE = get_config_dir() / "config.ini"


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path = DEFAULT_CONFIG_FILE):
        self.config_file_path = Path(config_file_path)
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(
        self,
        cli_options: Optional[dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> ServerConfig:
        """
        Builds the configuration from, in increasing precedence: model defaults,
        the INI file (if present), TUNEFETCH_* environment variables, and CLI options.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        values: dict[str, Any] = {}
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
            values.update(self._get_config_as_dict())
        else:
            log.debug(f"No configuration file at '{self.config_file_path}', using defaults.")

        values.update(self._env_overrides(os.environ if environ is None else environ))
        if cli_options:
            values.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return ServerConfig(**values, config_path=str(self.config_file_path.parent))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: Optional[dict[str, Any]] = None) -> None:
        """Creates and saves a new configuration file, filling gaps with defaults."""
        settings = settings or {}
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        defaults = ServerConfig()
        for key in sorted(ServerConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key))
            config["DEFAULT"][key] = _to_ini(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, str]:
        """Reads the known keys of the 'DEFAULT' section; pydantic coerces the types."""
        section = self._parser["DEFAULT"]
        known = ServerConfig.get_ini_keys()
        unknown = [key for key in section if key not in known]
        if unknown:
            log.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        return {key: section[key] for key in known if key in section}

    @staticmethod
    def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
        overrides = {}
        for key in ServerConfig.get_ini_keys():
            env_key = ENV_PREFIX + key.upper()
            if env_key in environ:
                overrides[key] = environ[env_key]
                log.debug(f"Config '{key}' overridden by {env_key}.")
        return overrides

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = ServerConfig()
        section = self._parser["DEFAULT"]
        needs_saving = False

        for key in sorted(ServerConfig.get_ini_keys()):
            if key not in section:
                section[key] = _to_ini(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving

    def read_raw(self) -> dict[str, str]:
        """Returns the file's DEFAULT section as written, for display."""
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e
        return dict(parser["DEFAULT"])


def _to_ini(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)
