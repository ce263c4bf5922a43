"""Manages loading, updating, and validating the application's configuration.

This module is responsible for handling the INI configuration file. It includes
functionality to:
- Write a default configuration file, optionally overwriting an existing one.
- Update an existing configuration file with new options from the template
  while preserving user-defined values.
- Load the configuration into a `ConfigParser` object and convert it into the
  typed `DaemonConfig` used by the daemon.
- Validate the configuration to ensure all required sections and options are
  present and have valid values.
"""
import configparser
import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import configupdater

DEFAULT_CONFIG_NAME = "torrent_unpacker.ini"
TEMPLATE_PATH = Path(__file__).resolve().parent / "config.ini.template"

DEFAULTS: Dict[str, Dict[str, str]] = {
    'CLIENT': {
        'type': 'qbittorrent',
        'host': '127.0.0.1',
        'port': '80',
        'username': '',
        'password': '',
        'verify_cert': 'true',
    },
    'PATHS': {
        'destination_path': '',
        'temp_path': '',
        'log_path': '',
    },
    'POLLING': {
        'timeout': '5',
        'delay': '10',
    },
    'WORKERS': {
        'unpack': '1',
        'check': '1',
    },
    'CATEGORIES': {
        'default': 'Completed',
        'error': 'Error',
        'no_archive': 'NoArchive',
        'unpack_start': 'Unpack',
        'unpack_busy': 'Unpacking',
        'unpack_done': 'Unpacked',
    },
}


@dataclass(frozen=True)
class Categories:
    """The six category labels the daemon reads and writes."""
    default: str = "Completed"
    error: str = "Error"
    no_archive: str = "NoArchive"
    unpack_start: str = "Unpack"
    unpack_busy: str = "Unpacking"
    unpack_done: str = "Unpacked"

    def all(self) -> Tuple[str, ...]:
        """Every label, in the order they are created on the client."""
        return (
            self.default, self.error, self.no_archive,
            self.unpack_busy, self.unpack_done, self.unpack_start,
        )


@dataclass(frozen=True)
class DaemonConfig:
    """Typed view of the settings the dispatcher and workers need."""
    destination_path: str
    temp_path: str = ""
    log_path: str = ""
    poll_timeout: float = 5.0
    poll_delay: float = 10.0
    unpack_workers: int = 1
    check_workers: int = 1
    categories: Categories = Categories()

    @classmethod
    def from_parser(cls, config: configparser.ConfigParser) -> "DaemonConfig":
        categories = Categories(**{
            key: config.get('CATEGORIES', key, fallback=value)
            for key, value in DEFAULTS['CATEGORIES'].items()
        })
        return cls(
            destination_path=config.get('PATHS', 'destination_path', fallback=''),
            temp_path=config.get('PATHS', 'temp_path', fallback=''),
            log_path=config.get('PATHS', 'log_path', fallback=''),
            poll_timeout=config.getfloat('POLLING', 'timeout', fallback=5.0),
            poll_delay=config.getfloat('POLLING', 'delay', fallback=10.0),
            unpack_workers=config.getint('WORKERS', 'unpack', fallback=1),
            check_workers=config.getint('WORKERS', 'check', fallback=1),
            categories=categories,
        )


def default_config() -> configparser.ConfigParser:
    """Returns a ConfigParser populated with the built-in defaults."""
    config = configparser.ConfigParser()
    config.read_dict(DEFAULTS)
    return config


def apply_path_overrides(config: configparser.ConfigParser, dest: Optional[str] = None, temp: Optional[str] = None) -> None:
    """Replaces the destination and temp paths when an override is given."""
    if not config.has_section('PATHS'):
        config.add_section('PATHS')
    if dest:
        config.set('PATHS', 'destination_path', dest)
    if temp:
        config.set('PATHS', 'temp_path', temp)


def write_default_config(path: str, force: bool = False, overrides: Optional[Mapping[str, Optional[str]]] = None) -> Path:
    """Writes the default configuration to `path`.

    If `path` is an existing directory, the file is created inside it as
    `torrent_unpacker.ini`.

    Args:
        path: Target file or directory.
        force: Overwrite an existing file.
        overrides: Optional 'dest' and 'temp' path overrides.

    Returns:
        The path of the written file.

    Raises:
        FileExistsError: If the file exists and `force` is False.
    """
    target = Path(path)
    if target.is_dir():
        target = target / DEFAULT_CONFIG_NAME

    config = default_config()
    if overrides:
        apply_path_overrides(config, overrides.get('dest'), overrides.get('temp'))

    mode = 'w' if force else 'x'
    try:
        with target.open(mode, encoding='utf-8') as f:
            config.write(f)
    except FileExistsError:
        raise FileExistsError(f"'{target}' already exists. Use --force to overwrite.") from None
    return target


def update_config(config_path: str, template_path: str = str(TEMPLATE_PATH)) -> None:
    """Updates an existing configuration file from a template, preserving user values.

    This function compares the user's configuration file with a template. It adds
    any new sections or options present in the template to the user's config
    file. Existing user-defined values, comments, and file structure are
    preserved.

    If the configuration file is modified, a timestamped backup of the original
    file is created in a `backup` subdirectory. If no configuration file exists
    at `config_path`, one is created from the template.

    Args:
        config_path: The path to the user's configuration file.
        template_path: The path to the template file.

    Raises:
        SystemExit: If the template file cannot be found or a new config cannot be created.
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

        changes_made = False
        for section_name in template_updater.sections():
            template_section = template_updater[section_name]
            if not updater.has_section(section_name):
                updater.add_section(section_name)
                logging.info(f"CONFIG: Added new section to config: [{section_name}]")
                changes_made = True
            for key, opt in template_section.items():
                if updater.has_option(section_name, key):
                    continue
                updater.set(section_name, key, opt.value)
                changes_made = True
                logging.info(f"CONFIG: Added new option in [{section_name}]: {key}")

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


def load_config(config_path: str) -> configparser.ConfigParser:
    """Loads the configuration from the specified .ini file on top of the defaults.

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
        logging.error("Create one with --write-config and fill in your details.")
        sys.exit(1)
    config = default_config()
    config.read(config_file, encoding='utf-8')
    return config


class ConfigValidator:
    """Validates the structure and values of the application's configuration.

    Attributes:
        config (configparser.ConfigParser): The configuration object to validate.
        errors (List[str]): Critical problems. If this list is not empty after
            validation, the configuration is considered invalid.
        warnings (List[str]): Non-critical problems worth reporting.
    """

    REQUIRED_SECTIONS = {
        'CLIENT': ['host', 'port'],
        'PATHS': ['destination_path'],
        'CATEGORIES': list(DEFAULTS['CATEGORIES']),
    }

    VALID_CLIENT_TYPES = ['qbittorrent']

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self) -> bool:
        """Runs all validation checks and prints resulting errors or warnings.

        Returns:
            `True` if the configuration is valid (no errors), `False` otherwise.
        """
        self._check_required_sections()
        self._check_required_options()
        self._check_client()
        self._check_paths()
        self._check_numeric_values()
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

    def _check_required_sections(self) -> None:
        for section in self.REQUIRED_SECTIONS:
            if not self.config.has_section(section):
                self.errors.append(f"Missing required section: [{section}]")

    def _check_required_options(self) -> None:
        for section, options in self.REQUIRED_SECTIONS.items():
            if not self.config.has_section(section):
                continue
            for option in options:
                if not self.config.has_option(section, option):
                    self.errors.append(f"Missing option '{option}' in [{section}]")
                elif not self.config.get(section, option).strip():
                    self.errors.append(f"Option '{option}' in [{section}] is empty")

    def _check_client(self) -> None:
        if not self.config.has_section('CLIENT'):
            return
        client_type = self.config.get('CLIENT', 'type', fallback='qbittorrent').lower()
        if client_type not in self.VALID_CLIENT_TYPES:
            self.errors.append(f"Invalid client type '{client_type}'. Must be one of: {', '.join(self.VALID_CLIENT_TYPES)}")
        if self.config.get('CLIENT', 'password', fallback='') and not self.config.get('CLIENT', 'username', fallback=''):
            self.warnings.append("A password is set in [CLIENT] but no username; it will not be used")

    def _check_paths(self) -> None:
        """Validates that the destination (and temp, if set) are existing directories."""
        if not self.config.has_section('PATHS'):
            return

        for option in ('destination_path', 'temp_path'):
            path = self.config.get('PATHS', option, fallback='').strip()
            if not path:
                continue
            if not os.path.exists(path):
                self.errors.append(f"{option} '{path}' does not exist")
            elif not os.path.isdir(path):
                self.errors.append(f"{option} '{path}' is not a directory")
            elif not Path(path).is_absolute():
                self.warnings.append(f"{option} '{path}' is not an absolute path")

    def _check_numeric_values(self) -> None:
        # (min, max) recommended range, parser, whether zero is accepted
        numeric_options = {
            ('CLIENT', 'port'): ((1, 65535), 'an integer', True),
            ('POLLING', 'timeout'): ((1, 300), 'a number', False),
            ('POLLING', 'delay'): ((1, 3600), 'a number', False),
            ('WORKERS', 'unpack'): ((0, 16), 'an integer', True),
            ('WORKERS', 'check'): ((0, 16), 'an integer', True),
        }

        parsed: Dict[Tuple[str, str], float] = {}
        for (section, option), ((min_val, max_val), kind, allow_zero) in numeric_options.items():
            if not self.config.has_option(section, option):
                continue
            try:
                if kind == 'an integer':
                    value = self.config.getint(section, option)
                else:
                    value = self.config.getfloat(section, option)
            except ValueError:
                self.errors.append(f"Option '{option}' in [{section}] must be {kind}")
                continue
            parsed[(section, option)] = value
            if value < 0:
                self.errors.append(f"Option '{option}' in [{section}] must not be negative")
            elif value == 0 and not allow_zero:
                self.errors.append(f"Option '{option}' in [{section}] must be greater than zero")
            elif not (min_val <= value <= max_val):
                self.warnings.append(
                    f"{option}={value} in [{section}] is outside recommended range [{min_val}-{max_val}]"
                )

        if parsed.get(('WORKERS', 'unpack')) == 0:
            self.warnings.append("No unpack workers configured; torrents will only be checked")
        if parsed.get(('WORKERS', 'check')) == 0:
            self.warnings.append("No check workers configured; new torrents will not be categorized")

    def _check_categories(self) -> None:
        if not self.config.has_section('CATEGORIES'):
            return
        labels = [self.config.get('CATEGORIES', key, fallback='').strip() for key in DEFAULTS['CATEGORIES']]
        labels = [label for label in labels if label]
        if len(set(labels)) != len(labels):
            self.errors.append("Category labels in [CATEGORIES] must be distinct")
