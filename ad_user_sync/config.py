"""
YAML configuration for AD User Sync.

The file has five sections: source, ldap, sync, logging and notifications.
Secrets may instead come from SOURCE_DATABASE_URL, LDAP_BIND_PASSWORD,
SMTP_PASSWORD and SENTRY_DSN. User field names are accepted in any spelling
the field registry resolves, and are rewritten to their canonical names after
validation.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ad_user_sync.models import resolve_field
from ad_user_sync.worker import DEFAULT_SYNC_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

SECTION_DEFAULTS = {
    'source': {'schema': None, 'columns': {}},
    'ldap': {
        'identity_attribute': 'sAMAccountName',
        'user_filter': '(objectClass=user)',
        'verify_ssl': True,
        'start_tls': False,
        'connection_timeout': 10,
        'receive_timeout': 10,
    },
    'sync': {'search_by': 'sam_account_name', 'interval_seconds': DEFAULT_SYNC_INTERVAL_SECONDS},
    'logging': {'level': 'INFO', 'log_dir': 'logs', 'rotation': 'daily', 'retention_days': 7},
    'notifications': {'enable_email': False, 'email_on_failure': True, 'smtp_port': 587, 'smtp_tls': True},
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Reads, validates and completes the configuration file."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'source.url': 'SOURCE_DATABASE_URL',
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
        'logging.sentry_dsn': 'SENTRY_DSN',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: YAML file to read; falls back to $CONFIG_PATH, then config.yaml
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Read the file, apply environment secrets, validate and fill in defaults.

        Raises:
            ConfigurationError: If the file is missing, is not valid YAML, or
                fails validation (all problems are reported together)
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()
        self._normalize_field_names()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        source_config = self.config.get('source') or {}
        for field in ['url', 'table']:
            if not source_config.get(field):
                errors.append(f"Missing required source field: {field}")
        for field_name in (source_config.get('columns') or {}):
            if resolve_field(field_name) is None:
                errors.append(f"Unknown user field in source.columns: {field_name}")

        ldap_config = self.config.get('ldap') or {}
        for field in ['server_url', 'bind_dn', 'bind_password', 'search_base']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        sync_config = self.config.get('sync') or {}
        field_mappings = sync_config.get('field_mappings')
        if not field_mappings:
            errors.append("At least one field mapping must be configured in sync.field_mappings")
        elif not isinstance(field_mappings, dict):
            errors.append("sync.field_mappings must map directory attributes to user fields")
        else:
            for attribute, field_name in field_mappings.items():
                if resolve_field(str(field_name)) is None:
                    errors.append(f"Unknown user field for attribute {attribute}: {field_name}")

        search_by = sync_config.get('search_by')
        if search_by is not None and not str(search_by).strip():
            errors.append("sync.search_by must name a user field, or be left out for sam_account_name")
        elif search_by is not None and resolve_field(str(search_by)) is None:
            errors.append(f"Unknown user field in sync.search_by: {search_by}")

        interval = sync_config.get('interval_seconds')
        if interval is not None:
            try:
                if float(interval) <= 0:
                    errors.append("sync.interval_seconds must be greater than zero")
            except (TypeError, ValueError):
                errors.append(f"sync.interval_seconds must be a number: {interval}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        for section, defaults in SECTION_DEFAULTS.items():
            values = self.config.get(section)
            if not isinstance(values, dict):
                values = self.config[section] = {}
            # An explicit null counts as not set
            for key, value in defaults.items():
                if values.get(key) is None:
                    values[key] = value

    def _normalize_field_names(self):
        """Rewrite user field references to their registry names (e.g. 'Email' -> 'email')."""
        sync_config = self.config['sync']
        sync_config['search_by'] = resolve_field(sync_config['search_by']).name
        sync_config['field_mappings'] = {
            attribute: resolve_field(str(field_name)).name
            for attribute, field_name in sync_config['field_mappings'].items()
        }
        sync_config['interval_seconds'] = float(sync_config['interval_seconds'])

        source_config = self.config['source']
        source_config['columns'] = {
            resolve_field(field_name).name: column
            for field_name, column in (source_config.get('columns') or {}).items()
        }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
