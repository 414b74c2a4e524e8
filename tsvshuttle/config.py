# tsvshuttle/config.py
"""
Configuration management for export and import jobs.
Supports YAML configuration files with optional password encryption and global settings.
"""

import os
import logging
from copy import deepcopy
from textwrap import dedent
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple

from .defaults import settings

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML is required. Install with: pip install PyYAML")

try:
    from cryptography.fernet import Fernet
    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

try:
    import keyring
    from keyring.errors import KeyringError
    HAS_KEYRING = True
except ImportError:
    HAS_KEYRING = False

logger = logging.getLogger(__name__)

KEY_ENV_VAR = 'TSVSHUTTLE_ENCRYPTION_KEY'
KEYRING_SERVICE = 'tsvshuttle'

# connection name used by each direction
DIRECTION_CONNECTIONS = {
    'export': 'source',
    'import': 'target',
}
REQUIRED_CONNECTION_KEYS = ('host', 'database', 'user', 'password')


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except (ValueError, TypeError):
        return False


def _merge_settings(base: dict, overrides: dict) -> None:
    """Merge overrides into base, descending into nested dicts like ``logging``."""
    for key, val in overrides.items():
        if isinstance(val, dict) and isinstance(base.get(key), dict):
            _merge_settings(base[key], val)
        else:
            base[key] = val


def diagnose_config(config_file: Optional[str] = None) -> List[Tuple[str, str]]:
    """Config health check for both export and import requirements."""
    results = []

    try:
        mgr = ConfigManager(config_file)
        results.append(('✓', f"Config loaded: {mgr.config_file}"))
    except (FileNotFoundError, ValueError) as e:
        results.append(('✗', f"Config failed: {e}"))
        return results

    results.append(('✓', "cryptography ready") if HAS_CRYPTO else ('✗', "cryptography missing"))
    results.append(('✓', "keyring ready") if HAS_KEYRING else ('?', "keyring optional"))

    env_key = os.getenv(KEY_ENV_VAR)
    if env_key:
        results.append(('✓', f"{KEY_ENV_VAR} set"))
        results.append(('✓', "Env key valid") if _valid_fernet(env_key) else ('✗', "Env key invalid"))
    else:
        results.append(('?', "No env key"))

    for direction in DIRECTION_CONNECTIONS:
        try:
            mgr.job_settings(direction)
            results.append(('✓', f"Ready for {direction}"))
        except ValueError as e:
            results.append(('✗', f"Not ready for {direction}: {e}"))

    plain = sum(
        1 for c in mgr.config.get('connections', {}).values()
        if 'password' in c and not str(c.get('password', '')).startswith('${')
    )
    results.append(("✗", f"{plain} unencrypted passwords!") if plain else ('✓', "No unencrypted passwords"))
    return results


class ConfigManager:
    """
    Manage tsvshuttle configuration from YAML files.

    Configuration File Structure
    ----------------------------
    ::

        # tsvshuttle.yml
        settings:
          work_dir: /data/staging
          logging:
            directory: /var/log/tsvshuttle

        connections:
          source:
            type: sqlserver
            host: src.database.windows.net
            database: sales
            user: exporter
            encrypted_password: gAAAAABh...
          target:
            type: sqlserver
            host: dst.database.windows.net
            database: sales
            user: importer
            password: ${TARGET_SQL_PASSWORD}

        storage:
          account: salesdumps

    Configuration Locations
    -----------------------
    1. File specified in config_file parameter
    2. ``./tsvshuttle.yml`` / ``./tsvshuttle.yaml``
    3. ``~/.config/tsvshuttle.yml`` / ``~/.config/tsvshuttle.yaml``

    Notes
    -----
    * Encrypted passwords need TSVSHUTTLE_ENCRYPTION_KEY or a key stored in the system keyring
    * Passwords can reference environment variables with ${VAR_NAME} syntax
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None
        self.settings = deepcopy(settings)
        _merge_settings(self.settings, self.config.get('settings', {}))

    def _find_config_file(self, config_file: Optional[str]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("tsvshuttle.yml"),
            Path("tsvshuttle.yaml"),
            Path.home() / ".config" / "tsvshuttle.yml",
            Path.home() / ".config" / "tsvshuttle.yaml"
        ]

        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ValueError(f"Failed to load config file {self.config_file}: {e}")

        if not isinstance(config, dict):
            raise ValueError(f"Invalid config file {self.config_file}.")

        for section in ('settings', 'connections', 'storage'):
            if section in config and not isinstance(config[section], dict):
                raise ValueError(f"Invalid config file {self.config_file}: '{section}' must be a dictionary")

        for name, conn in config.get('connections', {}).items():
            if not isinstance(conn, dict):
                raise ValueError(f"Invalid connection '{name}' in {self.config_file}: must be a dictionary")

        logger.info(f"Loaded config from {self.config_file}")
        return config

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value, falling back to built-in defaults.

        Args:
            key: Setting key (supports dot notation like 'login.timeout')
            default: Default value if key not found

        Example:
            timeout = config.get_setting('login.timeout', 300)
        """
        value = self.settings
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from environment variable or keyring."""
        key_str = os.environ.get(KEY_ENV_VAR)
        if key_str:
            logger.debug(f"Using {KEY_ENV_VAR} from environment")
            return key_str.encode()

        if HAS_KEYRING:
            try:
                key_str = keyring.get_password(KEYRING_SERVICE, 'encryption_key')
            except KeyringError as e:
                logger.warning(f"Keyring access failed: {e}")
                key_str = None
            if key_str:
                logger.debug("Using encryption key from keyring")
                return key_str.encode()

        if HAS_CRYPTO:
            if HAS_KEYRING:
                msg = dedent("""\
                Encryption key not found in environment or keyring.
                Run: `tsvshuttle store-key` to generate and store a new encryption key in the keyring.
                """)
            else:
                msg = dedent(f"""\
                Encryption key not found in environment or keyring.
                Run `tsvshuttle generate-key` to generate a new encryption key
                then set it in the {KEY_ENV_VAR} environment variable.""")
            raise ValueError(msg)
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    def _get_fernet(self) -> 'Fernet':
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        try:
            return self._get_fernet().decrypt(encrypted_password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to decrypt password: {e}")

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        try:
            return self._get_fernet().encrypt(password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to encrypt password: {e}")

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection with the password resolved."""
        connections = self.config.get('connections', {})

        if name not in connections:
            available = list(connections.keys())
            raise ValueError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {available}"
            )

        config = connections[name].copy()

        if 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config['encrypted_password'])
            del config['encrypted_password']

        if 'password' in config and isinstance(config['password'], str):
            if config['password'].startswith('${') and config['password'].endswith('}'):
                env_var = config['password'][2:-1]
                config['password'] = os.environ.get(env_var)
                if config['password'] is None:
                    raise ValueError(f"Environment variable {env_var} not set")

        return config

    def list_connections(self) -> list:
        """List all available connection names."""
        return list(self.config.get('connections', {}).keys())

    def get_storage_account(self) -> str:
        account = self.config.get('storage', {}).get('account')
        if not account:
            raise ValueError(f"'storage.account' is not set in {self.config_file}")
        return account

    def job_settings(self, direction: str) -> Dict[str, Any]:
        """
        Resolve everything a job needs from the config file.

        Args:
            direction: 'export' or 'import'

        Returns:
            Dict with 'connection' (resolved connection params) and 'storage_account'

        Raises:
            ValueError: If the connection or any required key is missing
        """
        if direction not in DIRECTION_CONNECTIONS:
            raise ValueError(f"Unknown direction '{direction}'. Must be one of: {list(DIRECTION_CONNECTIONS)}")

        conn_name = DIRECTION_CONNECTIONS[direction]
        connection = self.get_connection_config(conn_name)
        missing = [key for key in REQUIRED_CONNECTION_KEYS if not connection.get(key)]
        if missing:
            raise ValueError(
                f"Connection '{conn_name}' in {self.config_file} is missing: {', '.join(missing)}")
        connection.setdefault('type', 'sqlserver')

        return {
            'connection': connection,
            'storage_account': self.get_storage_account(),
        }


def store_key(key: Optional[str] = None, force: bool = False) -> None:
    """CLI utility to store encryption key in system keyring."""
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    if not HAS_KEYRING:
        raise ValueError("Keyring not available. Install keyring package to store key in system keyring.")

    try:
        current_key = keyring.get_password(KEYRING_SERVICE, "encryption_key")
    except KeyringError:
        current_key = None

    if current_key:
        if force:
            msg = "Encryption key already stored in system keyring. Overwriting!"
            logger.warning(msg)
            print(msg)
        else:
            msg = "Encryption key already stored in system keyring. Use --force to overwrite."
            logger.warning(msg)
            print(msg)
            return

    if key is None:
        key = _generate_encryption_key()
    elif not _valid_fernet(key):
        raise ValueError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        keyring.set_password(KEYRING_SERVICE, "encryption_key", key)
    except KeyringError as e:
        msg = f"Failed to store encryption key in system keyring: {e}"
        logger.error(msg)
        raise ValueError(msg)
    msg = "Stored encryption key in system keyring"
    logger.info(msg)
    print(msg)


def _generate_encryption_key() -> str:
    return Fernet.generate_key().decode()


def generate_encryption_key() -> str:
    """
    Generate a random encryption key.

    The key should be stored in the TSVSHUTTLE_ENCRYPTION_KEY environment
    variable or in the keyring by calling `tsvshuttle store-key [your key]`.
    """
    key = _generate_encryption_key()
    if HAS_KEYRING:
        msg = "Key generated.  Store in system keyring with `tsvshuttle store-key [your key]`"
    else:
        msg = f"Key generated.  Store in {KEY_ENV_VAR} environment variable"
    print(msg)
    print(key)
    return key


def encrypt_password(password: str = None, encryption_key: str = None) -> str:
    """
    CLI utility function to encrypt a password.

    Args:
        password: Password to encrypt (if None, prompts for input)
        encryption_key: Optional encryption key. If None, uses TSVSHUTTLE_ENCRYPTION_KEY or keyring
    """
    if password is None:
        import getpass
        password = getpass.getpass("Enter password to encrypt: ")

    if encryption_key:
        encrypted = Fernet(encryption_key.encode()).encrypt(password.encode()).decode()
    else:
        temp_config = ConfigManager.__new__(ConfigManager)
        temp_config._fernet = None
        encrypted = temp_config.encrypt_password(password)

    print(encrypted)
    return encrypted


def encrypt_config_file(filename: Optional[str] = None) -> int:
    """CLI Utility to encrypt all connection passwords in a config file."""
    if filename is None:
        filename = str(ConfigManager.__new__(ConfigManager)._find_config_file(None))
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    with open(filename) as fp:
        config = yaml.safe_load(fp)

    changes = 0
    for val in (config or {}).get('connections', {}).values():
        password = val.get('password')
        # environment references stay as they are
        if password and not str(password).startswith('${'):
            val['encrypted_password'] = temp_config.encrypt_password(str(password))
            del val['password']
            changes += 1

    if changes > 0:
        with open(filename, 'w') as fp:
            yaml.safe_dump(config, fp, default_flow_style=False, sort_keys=False)
        print(f"Encrypted {changes} passwords in {filename}")
    else:
        print(f"No passwords to encrypt in {filename}")
    return changes
