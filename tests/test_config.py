#!/usr/bin/env python3
"""
Unit tests for configuration loading and validation.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_user_sync.config import ConfigLoader, ConfigurationError, load_config


def valid_config():
    return {
        'source': {
            'url': 'postgresql://sync@hr-db/hr',
            'table': 'employees'
        },
        'ldap': {
            'server_url': 'ldaps://dc.example.com:636',
            'bind_dn': 'CN=svc-sync,OU=Service,DC=example,DC=com',
            'bind_password': 'secret',
            'search_base': 'OU=Users,DC=example,DC=com'
        },
        'sync': {
            'field_mappings': {
                'mail': 'Email',
                'givenName': 'FirstName',
                'info': 'hire_date'
            }
        }
    }


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.env = patch.dict(os.environ, {}, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, config):
        with open(self.config_path, 'w') as f:
            yaml.safe_dump(config, f)

    def test_load_valid_config(self):
        self.write_config(valid_config())

        config = ConfigLoader(self.config_path).load()

        self.assertEqual(config['source']['table'], 'employees')
        self.assertEqual(config['ldap']['search_base'], 'OU=Users,DC=example,DC=com')

    def test_defaults_applied(self):
        self.write_config(valid_config())

        config = load_config(self.config_path)

        self.assertEqual(config['ldap']['identity_attribute'], 'sAMAccountName')
        self.assertEqual(config['ldap']['user_filter'], '(objectClass=user)')
        self.assertTrue(config['ldap']['verify_ssl'])
        self.assertEqual(config['sync']['search_by'], 'sam_account_name')
        self.assertEqual(config['sync']['interval_seconds'], 300.0)
        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertFalse(config['notifications']['enable_email'])
        self.assertEqual(config['source']['columns'], {})
        self.assertIsNone(config['source']['schema'])

    def test_field_names_normalized(self):
        config_data = valid_config()
        config_data['sync']['search_by'] = 'SamAccountName'
        config_data['sync']['interval_seconds'] = '60'
        config_data['source']['columns'] = {'SamAccountName': 'login', 'middle_name': None}
        self.write_config(config_data)

        config = load_config(self.config_path)

        self.assertEqual(config['sync']['field_mappings'], {
            'mail': 'email',
            'givenName': 'first_name',
            'info': 'hire_date'
        })
        self.assertEqual(config['sync']['search_by'], 'sam_account_name')
        self.assertEqual(config['sync']['interval_seconds'], 60.0)
        self.assertEqual(config['source']['columns'], {'sam_account_name': 'login', 'middle_name': None})

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(os.path.join(self.temp_dir, 'missing.yaml')).load()
        self.assertIn('not found', str(ctx.exception))

    def test_invalid_yaml(self):
        with open(self.config_path, 'w') as f:
            f.write("ldap: [unclosed\n")
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.config_path).load()
        self.assertIn('Invalid YAML', str(ctx.exception))

    def test_non_mapping_root(self):
        with open(self.config_path, 'w') as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.config_path).load()

    def test_all_errors_reported_together(self):
        config_data = valid_config()
        del config_data['source']['url']
        del config_data['ldap']['search_base']
        config_data['sync']['field_mappings'] = {}
        self.write_config(config_data)

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.config_path).load()

        message = str(ctx.exception)
        self.assertIn('Missing required source field: url', message)
        self.assertIn('Missing required LDAP field: search_base', message)
        self.assertIn('At least one field mapping', message)

    def test_unknown_field_names_rejected(self):
        config_data = valid_config()
        config_data['sync']['field_mappings']['displayName'] = 'Nickname'
        config_data['sync']['search_by'] = 'login'
        config_data['source']['columns'] = {'shoe_size': 'shoe'}
        self.write_config(config_data)

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.config_path).load()

        message = str(ctx.exception)
        self.assertIn('Unknown user field for attribute displayName: Nickname', message)
        self.assertIn('Unknown user field in sync.search_by: login', message)
        self.assertIn('Unknown user field in source.columns: shoe_size', message)

    def test_invalid_interval(self):
        for interval in [0, -5, 'often']:
            config_data = valid_config()
            config_data['sync']['interval_seconds'] = interval
            self.write_config(config_data)
            with self.assertRaises(ConfigurationError, msg=str(interval)):
                ConfigLoader(self.config_path).load()

    def test_null_sync_settings_fall_back_to_defaults(self):
        config_data = valid_config()
        config_data['sync']['search_by'] = None
        config_data['sync']['interval_seconds'] = None
        self.write_config(config_data)

        config = load_config(self.config_path)

        self.assertEqual(config['sync']['search_by'], 'sam_account_name')
        self.assertEqual(config['sync']['interval_seconds'], 300.0)

    def test_blank_search_by_rejected(self):
        for search_by in ['', '   ']:
            config_data = valid_config()
            config_data['sync']['search_by'] = search_by
            self.write_config(config_data)

            with self.assertRaises(ConfigurationError) as ctx:
                ConfigLoader(self.config_path).load()
            self.assertIn('sync.search_by must name a user field', str(ctx.exception))

    def test_environment_overrides(self):
        config_data = valid_config()
        del config_data['ldap']['bind_password']
        del config_data['source']['url']
        self.write_config(config_data)

        with patch.dict(os.environ, {
            'LDAP_BIND_PASSWORD': 'from-env',
            'SOURCE_DATABASE_URL': 'sqlite:///hr.db',
            'SMTP_PASSWORD': 'smtp-secret'
        }):
            config = ConfigLoader(self.config_path).load()

        self.assertEqual(config['ldap']['bind_password'], 'from-env')
        self.assertEqual(config['source']['url'], 'sqlite:///hr.db')
        self.assertEqual(config['notifications']['smtp_password'], 'smtp-secret')

    def test_config_path_from_environment(self):
        self.write_config(valid_config())
        with patch.dict(os.environ, {'CONFIG_PATH': self.config_path}):
            loader = ConfigLoader()
        self.assertEqual(loader.config_path, self.config_path)

    def test_default_config_path(self):
        self.assertEqual(ConfigLoader().config_path, 'config.yaml')


if __name__ == '__main__':
    unittest.main()
