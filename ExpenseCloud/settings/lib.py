"""Settings library for the Firebase project configuration.

Provides:
    - Schema validation and enforcement for the firebase.json structure.
    - Loading, saving and reverting the configuration file.
    - Environment variable overrides for keys and emulator hosts.
    - Paths for the configuration and persisted session files.
"""

import json
import logging
import os
import pathlib
import shutil
from typing import Dict, Any, Optional

from PySide6 import QtCore

from ..status import status

app_name: str = 'ExpenseCloud'

DEFAULT_SIGNIN_ROUTE: str = '/signin'

FIREBASE_SCHEMA: Dict[str, Any] = {
    'api_key': {'type': str, 'required': True, 'non_empty': True},
    'project_id': {'type': str, 'required': True, 'non_empty': True},
    'auth_domain': {'type': str, 'required': False, 'default': ''},
    'signin_route': {'type': str, 'required': False, 'default': DEFAULT_SIGNIN_ROUTE},
    'persist_session': {'type': bool, 'required': False, 'default': True},
    'emulator': {
        'type': dict,
        'required': False,
        'default': {},
        'item_schema': {
            'auth_host': {'type': str, 'required': False},
            'firestore_host': {'type': str, 'required': False},
        }
    },
}

ENV_OVERRIDES: Dict[str, str] = {
    'EXPENSECLOUD_API_KEY': 'api_key',
    'EXPENSECLOUD_PROJECT_ID': 'project_id',
}

EMULATOR_ENV_OVERRIDES: Dict[str, str] = {
    'FIREBASE_AUTH_EMULATOR_HOST': 'auth_host',
    'FIRESTORE_EMULATOR_HOST': 'firestore_host',
}


def _validate_emulator(emulator_dict: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate the 'emulator' section of the firebase configuration.

    Args:
        emulator_dict: Mapping of emulator keys to host strings.
        item_schema: Dict describing the allowed keys and their types.

    Raises:
        status.FirebaseConfigInvalidException: On unknown keys or non-string hosts.
    """
    logging.debug('Validating "emulator" section.')
    for k, v in emulator_dict.items():
        if k not in item_schema:
            raise status.FirebaseConfigInvalidException(
                f'Unknown emulator key "{k}", must be one of {list(item_schema)}.')
        if not isinstance(v, item_schema[k]['type']):
            raise status.FirebaseConfigInvalidException(
                f'Emulator key "{k}" must be {item_schema[k]["type"]}, got {type(v)}.')


def validate_firebase_config(data: Dict[str, Any]) -> None:
    """Validate firebase configuration data against FIREBASE_SCHEMA.

    Args:
        data: The configuration dictionary.

    Raises:
        status.FirebaseConfigInvalidException: If a required key is missing, empty or of the wrong type.
    """
    if not isinstance(data, dict):
        raise status.FirebaseConfigInvalidException('Configuration must be a JSON object.')

    logging.debug('Validating firebase config against schema.')
    for field, specs in FIREBASE_SCHEMA.items():
        if specs.get('required') and field not in data:
            raise status.FirebaseConfigInvalidException(f'Missing required field: {field}')

        if field not in data:
            continue

        value = data[field]
        if not isinstance(value, specs['type']):
            raise status.FirebaseConfigInvalidException(
                f'Field "{field}" must be {specs["type"]}, got {type(value)}.')

        if specs.get('non_empty') and not value.strip():
            raise status.FirebaseConfigInvalidException(f'Field "{field}" must not be empty.')

        if field == 'emulator':
            _validate_emulator(value, specs['item_schema'])

    logging.debug('Firebase config is valid.')


class ConfigPaths:
    """Manage application file paths and ensure the default template is in place.

    The configuration lives in the Qt application data directory:

        <AppData>/config/firebase.json
        <AppData>/config/auth/session.json
    """

    def __init__(self) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.firebase_template: pathlib.Path = self.template_dir / 'firebase.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'

        self.firebase_path: pathlib.Path = self.config_dir / 'firebase.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'session.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists, create directories and copy the default config.

        Raises:
            FileNotFoundError: If the template file is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        if not self.firebase_template.exists():
            msg: str = f'Missing firebase template: {self.firebase_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        if not self.auth_dir.exists():
            logging.debug(f'Creating auth directory: {self.auth_dir}')
            self.auth_dir.mkdir(parents=True, exist_ok=True)

        if not self.firebase_path.exists():
            logging.debug(f'Copying default firebase config from template to {self.firebase_path}')
            shutil.copy(self.firebase_template, self.firebase_path)

    def revert_firebase_to_template(self) -> None:
        """Restore firebase.json from the default template file.

        Raises:
            FileNotFoundError: If the template file is missing.
        """
        logging.debug(f'Reverting firebase config to template: {self.firebase_template}')
        if not self.firebase_template.exists():
            msg: str = f'Firebase template not found: {self.firebase_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        shutil.copy(self.firebase_template, self.firebase_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save the firebase.json configuration.
    """

    def __init__(self, firebase_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load the firebase configuration.

        Args:
            firebase_path: Optional path to a custom firebase.json file.
        """
        super().__init__()

        self.firebase_path: pathlib.Path = pathlib.Path(firebase_path) if firebase_path else self.firebase_path
        self.data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a configuration value, falling back to the schema default.

        Raises:
            KeyError: If key is not defined in FIREBASE_SCHEMA.
        """
        if key not in FIREBASE_SCHEMA:
            raise KeyError(f'Invalid config key: {key}, must be one of {list(FIREBASE_SCHEMA)}')
        return self.data.get(key, FIREBASE_SCHEMA[key].get('default'))

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a configuration value and persist it.

        Raises:
            KeyError: If key is not defined in FIREBASE_SCHEMA.
            status.FirebaseConfigInvalidException: If the new value does not validate.
        """
        if key not in FIREBASE_SCHEMA:
            raise KeyError(f'Invalid config key: {key}, must be one of {list(FIREBASE_SCHEMA)}')

        _type = FIREBASE_SCHEMA[key]['type']
        if not isinstance(value, _type):
            raise status.FirebaseConfigInvalidException(
                f'Config key "{key}" must be {_type}, got {type(value)}.')

        self.data[key] = value
        self.save()

    def init_data(self) -> None:
        """Reload the configuration from disk."""
        self.load()

    def load(self) -> Dict[str, Any]:
        """Load firebase.json from disk.

        The data is not validated here: the shipped template carries empty
        keys until the user fills them in. See :meth:`get_firebase_config`.

        Returns:
            The loaded configuration dictionary.

        Raises:
            status.FirebaseConfigNotFoundException: If firebase.json is missing.
            status.FirebaseConfigInvalidException: If the file is not a JSON object.
        """
        logging.debug(f'Loading firebase config from "{self.firebase_path}"')
        if not self.firebase_path.exists():
            raise status.FirebaseConfigNotFoundException

        try:
            with self.firebase_path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (ValueError, json.JSONDecodeError) as ex:
            raise status.FirebaseConfigInvalidException(str(ex)) from ex

        if not isinstance(data, dict):
            raise status.FirebaseConfigInvalidException('Configuration must be a JSON object.')

        self.data = data
        return self.data

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a dict section (e.g. 'emulator').

        Raises:
            KeyError: If section_name is not a dict section of the schema.
        """
        if FIREBASE_SCHEMA.get(section_name, {}).get('type') is not dict:
            raise KeyError(f'"{section_name}" is not a configuration section.')
        return dict(self.data.get(section_name, {}))

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a dict section.

        Raises:
            KeyError: If section_name is not a dict section of the schema.
            status.FirebaseConfigInvalidException: If the new data does not validate.
        """
        if FIREBASE_SCHEMA.get(section_name, {}).get('type') is not dict:
            raise KeyError(f'"{section_name}" is not a configuration section.')
        if not isinstance(new_data, dict):
            raise status.FirebaseConfigInvalidException(f'{section_name} must be a dict.')
        if section_name == 'emulator':
            _validate_emulator(new_data, FIREBASE_SCHEMA['emulator']['item_schema'])

        self.data[section_name] = new_data
        self.save()

    def save(self) -> None:
        """Write the current configuration to firebase.json."""
        logging.debug(f'Saving firebase config to "{self.firebase_path}"')
        with self.firebase_path.open('w', encoding='utf-8') as f:
            json.dump(self.data, f, indent=4, ensure_ascii=False)

    def revert(self) -> None:
        """Revert firebase.json to the template and reload it."""
        self.revert_firebase_to_template()
        self.load()

    def get_firebase_config(self) -> Dict[str, Any]:
        """Return the validated configuration with defaults and environment overrides applied.

        Environment variables take precedence over the file, so CI and local
        emulator runs can be configured without editing firebase.json.

        Returns:
            A new dict containing every FIREBASE_SCHEMA key.

        Raises:
            status.FirebaseConfigInvalidException: If the merged configuration is invalid.
        """
        config: Dict[str, Any] = {}
        for key, specs in FIREBASE_SCHEMA.items():
            if key in self.data:
                config[key] = self.data[key]
            elif 'default' in specs:
                default = specs['default']
                config[key] = dict(default) if isinstance(default, dict) else default

        for env_key, key in ENV_OVERRIDES.items():
            if os.environ.get(env_key):
                logging.debug(f'Using "{key}" from ${env_key}')
                config[key] = os.environ[env_key]

        emulator = dict(config.get('emulator') or {})
        for env_key, key in EMULATOR_ENV_OVERRIDES.items():
            if os.environ.get(env_key):
                logging.debug(f'Using emulator "{key}" from ${env_key}')
                emulator[key] = os.environ[env_key]
        config['emulator'] = emulator

        validate_firebase_config(config)
        return config


settings: SettingsAPI = SettingsAPI()
