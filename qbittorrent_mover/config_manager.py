"""Manages loading, updating, and validating the application's configuration.

This module is responsible for handling the `config.ini` file. It includes
functionality to:
- Create a new configuration file from the bundled template if one doesn't exist.
- Update an existing configuration file with new options from the template
  while preserving user-defined values and comments.
- Load the configuration into a `ConfigParser` object.
- Validate the configuration and turn it into immutable `Settings` and
  `ServerProfile` values for the rest of the application.

Each qBittorrent instance is described by a `[SERVER:<name>]` section and a
`[SERVER:<name>:CATEGORIES]` section mapping category names to destination
directories.
"""
import configparser
import logging
import shutil
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import configupdater

from .utils import ConfigError, parse_size

TEMPLATE_PATH = Path(__file__).resolve().parent / 'config.ini.template'

SETTINGS_SECTION = 'SETTINGS'
SERVER_PREFIX = 'SERVER:'
CATEGORIES_SUFFIX = ':CATEGORIES'

DEFAULT_CYCLE_DELAY = 5
DEFAULT_LOG_FILE = 'qbittorrent-mover.log'
DEFAULT_MAX_LOG_FILE_SIZE = '10M'
DEFAULT_MAX_PARALLEL_MOVES = 4


@dataclass(frozen=True)
class ServerProfile:
    """Connection details and path rules for one qBittorrent instance.

    Attributes:
        name: The label from the `[SERVER:<name>]` section header, used in logs.
        qbit_url: Base URL of the WebUI, e.g. `http://localhost:8080`.
        username: WebUI user, sent as basic credentials.
        password: WebUI password, sent as basic credentials.
        categories: Maps a qBittorrent category to its destination directory.
        root_path: Local directory under which the server's save paths live.
        path_prefix: Prefix stripped from the reported save path before it is
            joined with `root_path`.
        verify_cert: Whether the WebUI TLS certificate is verified.
    """
    name: str
    qbit_url: str = 'http://localhost:8080'
    username: str = 'admin'
    password: str = 'adminadmin'
    categories: Dict[str, str] = field(default_factory=dict)
    root_path: Optional[str] = None
    path_prefix: Optional[str] = None
    verify_cert: bool = True


@dataclass(frozen=True)
class Settings:
    """Everything the scheduler needs, parsed from the configuration file."""
    servers: List[ServerProfile] = field(default_factory=list)
    cycle_delay: int = DEFAULT_CYCLE_DELAY
    log_file: str = DEFAULT_LOG_FILE
    max_log_file_size: str = DEFAULT_MAX_LOG_FILE_SIZE
    max_parallel_moves: int = DEFAULT_MAX_PARALLEL_MOVES


def _split_server_section(section_name: str) -> Tuple[Optional[str], bool]:
    """Returns (server name, is categories section) for a section header, or (None, False)."""
    if not section_name.startswith(SERVER_PREFIX):
        return None, False
    rest = section_name[len(SERVER_PREFIX):]
    if rest.endswith(CATEGORIES_SUFFIX):
        return rest[:-len(CATEGORIES_SUFFIX)], True
    return rest, False


def update_config(config_path: str, template_path: str = str(TEMPLATE_PATH)) -> None:
    """Updates an existing config.ini from the template, preserving user values.

    Missing options of the `[SETTINGS]` section are added from the template.
    The template's example server section supplies defaults for every server
    the user has configured: options missing from a user's `[SERVER:<name>]`
    section are added to it. Category sections are never modified, and the
    template's example server is never added to an existing file.

    If the configuration file is modified, a timestamped backup of the original
    file is created in a `backup` subdirectory. If no configuration file exists
    at `config_path`, one is created from the template.

    Args:
        config_path: The path to the user's configuration file.
        template_path: The path to the template file.

    Raises:
        SystemExit: If the template file cannot be found, a new config cannot
            be created, or the update fails.
    """
    config_file = Path(config_path)
    template_file = Path(template_path)
    logging.info("STATE: Checking for configuration updates...")

    if not template_file.is_file():
        logging.error(f"FATAL: Config template '{template_path}' not found.")
        sys.exit(1)

    if not config_file.is_file():
        logging.warning(f"Configuration file not found at '{config_path}'.")
        logging.warning("Creating a new one from the template. Please review and fill it out.")
        try:
            shutil.copy2(template_file, config_file)
        except OSError as e:
            logging.error(f"FATAL: Could not create config file: {e}")
            sys.exit(1)
        return

    try:
        updater = configupdater.ConfigUpdater()
        updater.read(config_file, encoding='utf-8')
        template_updater = configupdater.ConfigUpdater()
        template_updater.read(template_file, encoding='utf-8')

        example_server = None
        for section_name in template_updater.sections():
            server_name, is_categories = _split_server_section(section_name)
            if server_name is not None and not is_categories:
                example_server = template_updater[section_name]
                break

        changes_made = False
        if template_updater.has_section(SETTINGS_SECTION):
            if not updater.has_section(SETTINGS_SECTION):
                updater.add_section(SETTINGS_SECTION)
                logging.info(f"CONFIG: Added new section to config: [{SETTINGS_SECTION}]")
                changes_made = True
            changes_made |= _add_missing_options(updater[SETTINGS_SECTION], template_updater[SETTINGS_SECTION])

        if example_server is not None:
            for section_name in updater.sections():
                server_name, is_categories = _split_server_section(section_name)
                if server_name is None or is_categories:
                    continue
                changes_made |= _add_missing_options(updater[section_name], example_server)

        if changes_made:
            backup_dir = config_file.parent / 'backup'
            backup_dir.mkdir(exist_ok=True)
            backup_filename = f"{config_file.stem}.bak_{time.strftime('%Y%m%d-%H%M%S')}"
            backup_path = backup_dir / backup_filename
            shutil.copy2(config_file, backup_path)
            logging.info(f"CONFIG: Backed up existing configuration to '{backup_path}'")
            with config_file.open('w', encoding='utf-8') as f:
                updater.write(f)
            logging.info("CONFIG: Configuration file has been updated with new options.")
        else:
            logging.info("CONFIG: Configuration file is already up-to-date.")
    except Exception as e:
        logging.error(f"FATAL: An error occurred during config update: {e}", exc_info=True)
        sys.exit(1)


def _add_missing_options(user_section, template_section) -> bool:
    changed = False
    for key, opt in template_section.items():
        if not user_section.has_option(key):
            user_section.set(key, opt.value)
            logging.info(f"CONFIG: Added new option in [{user_section.name}]: {key}")
            changed = True
    return changed


def load_config(config_path: str = "config.ini") -> configparser.ConfigParser:
    """Loads the configuration from the specified .ini file.

    Option names keep their case, since qBittorrent category names are
    case-sensitive. Interpolation is disabled so passwords may contain '%'.

    Args:
        config_path: The path to the configuration file.

    Returns:
        A `ConfigParser` object loaded with the configuration settings.

    Raises:
        SystemExit: If the configuration file does not exist at `config_path`.
    """
    config_file = Path(config_path)
    if not config_file.is_file():
        logging.error(f"FATAL: Configuration file not found at '{config_path}'.")
        logging.error("Run the mover once to create it from the template, then fill in your details.")
        sys.exit(1)
    config = new_config_parser()
    config.read(config_file, encoding='utf-8')
    return config


def new_config_parser() -> configparser.ConfigParser:
    config = configparser.ConfigParser(interpolation=None)
    config.optionxform = str  # type: ignore[assignment]
    return config


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_settings(config: configparser.ConfigParser) -> Settings:
    """Builds `Settings` from a loaded configuration.

    Args:
        config: A `ConfigParser` as returned by `load_config`.

    Returns:
        The parsed settings, with one `ServerProfile` per `[SERVER:<name>]`
        section in file order.

    Raises:
        ConfigError: If a value cannot be converted to its expected type.
    """
    try:
        if config.has_section(SETTINGS_SECTION):
            section = config[SETTINGS_SECTION]
            cycle_delay = section.getint('cycle_delay', fallback=DEFAULT_CYCLE_DELAY)
            log_file = section.get('log_file', fallback=DEFAULT_LOG_FILE).strip() or DEFAULT_LOG_FILE
            max_log_file_size = section.get('max_log_file_size', fallback=DEFAULT_MAX_LOG_FILE_SIZE).strip()
            max_parallel_moves = section.getint('max_parallel_moves', fallback=DEFAULT_MAX_PARALLEL_MOVES)
        else:
            cycle_delay = DEFAULT_CYCLE_DELAY
            log_file = DEFAULT_LOG_FILE
            max_log_file_size = DEFAULT_MAX_LOG_FILE_SIZE
            max_parallel_moves = DEFAULT_MAX_PARALLEL_MOVES

        servers = []
        for section_name in config.sections():
            server_name, is_categories = _split_server_section(section_name)
            if server_name is None or is_categories:
                continue
            section = config[section_name]
            categories_section = f"{SERVER_PREFIX}{server_name}{CATEGORIES_SUFFIX}"
            categories: Dict[str, str] = {}
            if config.has_section(categories_section):
                categories = {k: v.strip() for k, v in config[categories_section].items() if v.strip()}
            servers.append(ServerProfile(
                name=server_name,
                qbit_url=section.get('qbit_url', fallback='').strip().rstrip('/'),
                username=section.get('username', fallback=''),
                password=section.get('password', fallback=''),
                categories=categories,
                root_path=_optional(section.get('root_path')),
                path_prefix=_optional(section.get('path_prefix')),
                verify_cert=section.getboolean('verify_cert', fallback=True),
            ))
    except ValueError as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    return Settings(
        servers=servers,
        cycle_delay=cycle_delay,
        log_file=log_file,
        max_log_file_size=max_log_file_size,
        max_parallel_moves=max_parallel_moves,
    )


class ConfigValidator:
    """Validates the structure and values of the application's configuration.

    Attributes:
        config (configparser.ConfigParser): The configuration object to validate.
        errors (List[str]): Critical problems. If this list is not empty after
            validation, the configuration is considered invalid.
        warnings (List[str]): Non-critical problems that are reported but do not
            invalidate the configuration.
    """

    REQUIRED_SERVER_OPTIONS = ['qbit_url', 'username', 'password']

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self) -> bool:
        """Runs all validation checks and prints resulting errors or warnings.

        Returns:
            `True` if the configuration is valid (no errors), `False` otherwise.
        """
        self._check_settings()
        self._check_servers()
        self._check_categories()

        if self.errors:
            print("Configuration errors found:", file=sys.stderr)
            for error in self.errors:
                print(f" ❌ {error}", file=sys.stderr)
            return False

        if self.warnings:
            print("Configuration warnings:", file=sys.stderr)
            for warning in self.warnings:
                print(f" ⚠️ {warning}", file=sys.stderr)

        return True

    def _server_sections(self) -> List[Tuple[str, str]]:
        result = []
        for section_name in self.config.sections():
            server_name, is_categories = _split_server_section(section_name)
            if server_name is not None and not is_categories:
                result.append((section_name, server_name))
        return result

    def _check_settings(self) -> None:
        """Checks the [SETTINGS] section and its numeric and size values."""
        if not self.config.has_section(SETTINGS_SECTION):
            self.errors.append(f"Missing required section: [{SETTINGS_SECTION}]")
            return

        for option, max_val in (('cycle_delay', 86400), ('max_parallel_moves', 64)):
            if not self.config.has_option(SETTINGS_SECTION, option):
                continue
            try:
                value = self.config.getint(SETTINGS_SECTION, option)
            except ValueError:
                self.errors.append(f"Option '{option}' must be an integer")
                continue
            if value < 1:
                self.errors.append(f"Option '{option}' must be at least 1, got {value}")
            elif value > max_val:
                self.warnings.append(f"{option}={value} is outside recommended range [1-{max_val}]")

        size = self.config.get(SETTINGS_SECTION, 'max_log_file_size', fallback=DEFAULT_MAX_LOG_FILE_SIZE)
        try:
            if parse_size(size) == 0:
                self.errors.append("Option 'max_log_file_size' must be greater than zero")
        except ValueError:
            self.errors.append(f"Option 'max_log_file_size' has an invalid size '{size}' (use e.g. 10M or 1G)")

    def _check_servers(self) -> None:
        """Checks every server section for credentials, a usable URL and sane paths."""
        servers = self._server_sections()
        if not servers:
            self.warnings.append("No [SERVER:<name>] sections found; nothing will be moved")
            return

        for section_name, server_name in servers:
            section = self.config[section_name]
            for option in self.REQUIRED_SERVER_OPTIONS:
                if not section.get(option, fallback='').strip():
                    self.errors.append(f"Missing or empty option '{option}' in [{section_name}]")

            url = section.get('qbit_url', fallback='').strip()
            if url and urlparse(url).scheme not in ('http', 'https'):
                self.errors.append(f"qbit_url '{url}' in [{section_name}] must start with http:// or https://")

            try:
                section.getboolean('verify_cert', fallback=True)
            except ValueError:
                self.errors.append(f"Option 'verify_cert' in [{section_name}] must be true or false")

            path_prefix = section.get('path_prefix', fallback='').strip()
            if path_prefix and not PurePosixPath(path_prefix).is_absolute():
                self.warnings.append(f"path_prefix '{path_prefix}' in [{section_name}] is not an absolute path")

            categories_section = f"{SERVER_PREFIX}{server_name}{CATEGORIES_SUFFIX}"
            if not self.config.has_section(categories_section) or not any(
                    v.strip() for v in self.config[categories_section].values()):
                self.warnings.append(f"Server '{server_name}' has no categories; its torrents will never be moved")

    def _check_categories(self) -> None:
        """Checks that category sections belong to a server and point at absolute directories."""
        for section_name in self.config.sections():
            server_name, is_categories = _split_server_section(section_name)
            if not is_categories:
                continue
            if not self.config.has_section(f"{SERVER_PREFIX}{server_name}"):
                self.errors.append(f"[{section_name}] references non-existent section [{SERVER_PREFIX}{server_name}]")
            for category, dest in self.config[section_name].items():
                dest = dest.strip()
                if dest and not Path(dest).is_absolute():
                    self.warnings.append(f"Destination '{dest}' for category '{category}' in [{section_name}] is not an absolute path")
