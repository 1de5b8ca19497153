"""Settings library for store, backup and authentication configuration.

Provides:
    - Application data paths (config, auth and db directories).
    - Schema validation and enforcement for the settings.json structure.
    - Loading, saving and reverting application settings.
    - Loading and validating the Google OAuth client secret.
"""

import copy
import json
import logging
import os
import pathlib
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from . import locale
from ..status import status

app_name: str = 'ETracker'

DATA_DIR_ENV_KEY: str = 'ETRACKER_DATA_DIR'

METADATA_KEYS: List[str] = [
    'locale',
]

SETTINGS_SCHEMA: Dict[str, Any] = {
    'store': {
        'type': dict,
        'required': True,
        'item_schema': {
            'filename': {'type': str, 'required': True, 'format': 'filename'},
            'verify_restore': {'type': bool, 'required': True},
        }
    },
    'backup': {
        'type': dict,
        'required': True,
        'item_schema': {
            'prefix': {'type': str, 'required': True, 'format': 'nonempty'},
        }
    },
    'metadata': {
        'type': dict,
        'required': True,
        'item_schema': {
            'locale': {'type': str, 'required': True, 'format': 'locale'},
        }
    },
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    'store': {
        'filename': 'etracker.db',
        'verify_restore': True,
    },
    'backup': {
        'prefix': 'expense_backup_',
    },
    'metadata': {
        'locale': 'en_GB',
    },
}


def _validate_item(section: str, key: str, value: Any, item: Dict[str, Any]) -> None:
    """Validate a single settings value against its item schema.

    Raises:
        status.SettingsInvalidException: If the type or format is wrong.
    """
    if not isinstance(value, item['type']):
        raise status.SettingsInvalidException(
            f'"{section}.{key}" must be {item["type"].__name__}, got {type(value).__name__}.'
        )

    fmt = item.get('format')
    if fmt == 'nonempty' and not value.strip():
        raise status.SettingsInvalidException(f'"{section}.{key}" must not be empty.')
    if fmt == 'filename':
        if not value.strip() or pathlib.Path(value).name != value:
            raise status.SettingsInvalidException(
                f'"{section}.{key}" must be a bare file name, got "{value}".'
            )
    if fmt == 'locale' and not locale.is_valid_locale(value):
        raise status.SettingsInvalidException(f'"{section}.{key}" is not a known locale: "{value}".')


def _validate_section(section: str, data: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one settings section against its item schema.

    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    for key, item in item_schema.items():
        if item.get('required') and key not in data:
            raise status.SettingsInvalidException(f'Missing required field: "{section}.{key}".')
        if key in data:
            _validate_item(section, key, data[key], item)

    unknown = set(data) - set(item_schema)
    if unknown:
        raise status.SettingsInvalidException(f'Unknown fields in "{section}": {sorted(unknown)}.')


class ConfigPaths:
    """Manage application file paths and ensure required directories exist.

    The data directory is resolved from, in order: the explicit ``root`` argument,
    the ``ETRACKER_DATA_DIR`` environment variable and Qt's per-user application
    data location.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        app_data_dir = self._resolve_root(root)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.app_data_dir: pathlib.Path = app_data_dir
        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = app_data_dir / 'db'

        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'

        self._verify_and_prepare()

    @staticmethod
    def _resolve_root(root: Optional[str]) -> pathlib.Path:
        if root:
            return pathlib.Path(root)

        env_root = os.environ.get(DATA_DIR_ENV_KEY)
        if env_root:
            return pathlib.Path(env_root)

        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        return pathlib.Path(p)

    def _verify_and_prepare(self) -> None:
        """Create the config, auth and db directories when missing."""
        for d in (self.config_dir, self.auth_dir, self.db_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections and to
    load the Google client secret.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, root: Optional[str] = None) -> None:
        super().__init__(root=root)

        self.settings_data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a metadata value using dictionary-style access.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, expected one of {METADATA_KEYS}')
        return self.settings_data['metadata'][key]

    def __setitem__(self, key: str, value: Any) -> None:
        """Set and persist a metadata value using dictionary-style access."""
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, expected one of {METADATA_KEYS}')

        data = self.get_section('metadata')
        data[key] = value
        self.set_section('metadata', data)

    @property
    def db_path(self) -> pathlib.Path:
        """Canonical path of the store file."""
        return self.db_dir / self.settings_data['store']['filename']

    def init_data(self) -> None:
        """Load settings.json (creating it from defaults) and any client secret present."""
        if not self.settings_path.exists():
            logging.debug(f'Writing default settings to {self.settings_path}')
            self.settings_data = copy.deepcopy(DEFAULT_SETTINGS)
            self.save()
        self.load_settings()

        if self.client_secret_path.exists():
            self.load_client_secret()

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against schema.

        Raises:
            status.SettingsInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except (OSError, ValueError) as ex:
            raise status.SettingsInvalidException(f'Could not read {self.settings_path}: {ex}') from ex

        self.validate_settings_data(data)
        self.settings_data = data
        return self.settings_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If JSON parsing or required fields are missing.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException(f'Client secret file not found: {self.client_secret_path}')
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except ValueError as ex:
            raise status.ClientSecretInvalidException from ex

        self.validate_client_secret(data)
        self.client_secret_data = data
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid client_secret section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in self.required_client_secret_keys if k not in config_section]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against SETTINGS_SCHEMA.

        Raises:
            status.SettingsInvalidException: If a required section is missing or validation fails.
        """
        if data is None:
            data = self.settings_data
        if not isinstance(data, dict):
            raise status.SettingsInvalidException('Settings must be a JSON object.')

        for field, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.SettingsInvalidException(f'Missing required section: {field}')
            if field not in data:
                continue
            if not isinstance(data[field], specs['type']):
                raise status.SettingsInvalidException(
                    f'Section "{field}" must be {specs["type"].__name__}, got {type(data[field]).__name__}.'
                )
            _validate_section(field, data[field], specs['item_schema'])

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a settings section or of the client secret.

        Raises:
            KeyError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            return copy.deepcopy(self.client_secret_data)
        return copy.deepcopy(self.settings_data[section_name])

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Validate, replace and persist a settings section.

        Raises:
            ValueError: If section_name is not recognized.
            status.SettingsInvalidException: If new_data fails validation.
        """
        if section_name == 'client_secret':
            self.validate_client_secret(new_data)
            self.client_secret_data = copy.deepcopy(new_data)
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in SETTINGS_SCHEMA:
            raise ValueError(f'Unknown settings section: {section_name}')

        _validate_section(section_name, new_data, SETTINGS_SCHEMA[section_name]['item_schema'])
        self.settings_data[section_name] = copy.deepcopy(new_data)
        self.save()
        logging.debug(f'Settings section "{section_name}" updated.')

    def revert_to_defaults(self) -> None:
        """Replace settings.json with the built-in defaults."""
        logging.debug('Reverting settings to defaults.')
        self.settings_data = copy.deepcopy(DEFAULT_SETTINGS)
        self.save()

    def save(self) -> None:
        """Write settings.json atomically via a temporary file."""
        self.validate_settings_data()
        tmp = self.settings_path.with_suffix('.tmp')
        with tmp.open('w', encoding='utf-8') as f:
            json.dump(self.settings_data, f, indent=4, ensure_ascii=False)
        os.replace(tmp, self.settings_path)


settings: SettingsAPI = SettingsAPI()
