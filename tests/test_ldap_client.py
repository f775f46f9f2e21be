#!/usr/bin/env python3
"""
Unit tests for the LDAP client wrapper.
"""

import os
import sys
import ssl
import unittest
from unittest.mock import Mock, patch

from ldap3 import SUBTREE, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPSocketOpenError

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_user_sync.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError, LDAPModifyError


def make_connection(open_ok=True, bind_ok=True, start_tls_ok=True):
    connection = Mock()
    connection.open.return_value = open_ok
    connection.bind.return_value = bind_ok
    connection.start_tls.return_value = start_tls_ok
    connection.result = {'result': 0, 'description': 'success', 'message': ''}
    connection.entries = []
    return connection


def make_entry(dn, attributes):
    entry = Mock()
    entry.entry_dn = dn
    entry.entry_attributes_as_dict = attributes
    return entry


class TestLDAPClient(unittest.TestCase):
    """Test cases for LDAPClient configuration and connection handling."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = {
            'server_url': 'ldap://dc.example.com:389',
            'bind_dn': 'CN=svc-sync,OU=Service,DC=example,DC=com',
            'bind_password': 'password123',
            'search_base': 'OU=Users,DC=example,DC=com'
        }

    def test_initialization(self):
        client = LDAPClient(self.config)

        self.assertEqual(client.search_base, 'OU=Users,DC=example,DC=com')
        self.assertFalse(client.use_ssl)
        self.assertFalse(client.start_tls)
        self.assertTrue(client.verify_ssl)
        self.assertEqual(client.connection_timeout, 10)
        self.assertFalse(client.connected)

    def test_ssl_detection_from_url(self):
        """Test SSL detection from server URL."""
        config = dict(self.config, server_url='ldaps://dc.example.com:636')
        self.assertTrue(LDAPClient(config).use_ssl)

        config['use_ssl'] = False
        self.assertFalse(LDAPClient(config).use_ssl)

    def test_no_tls_config_for_plain_ldap(self):
        client = LDAPClient(self.config)
        self.assertIsNone(client._tls_settings())

    @patch('ad_user_sync.ldap_client.Tls')
    def test_tls_config_options(self, mock_tls):
        """Test TLS options passed to ldap3."""
        config = dict(self.config, start_tls=True, ca_cert_file='/etc/ssl/ca.pem',
                      cert_file='/etc/ssl/client.pem', key_file='/etc/ssl/client.key')

        LDAPClient(config)._tls_settings()

        mock_tls.assert_called_once_with(
            validate=ssl.CERT_REQUIRED,
            ca_certs_file='/etc/ssl/ca.pem',
            local_certificate_file='/etc/ssl/client.pem',
            local_private_key_file='/etc/ssl/client.key'
        )

    @patch('ad_user_sync.ldap_client.Tls')
    def test_tls_config_without_verification(self, mock_tls):
        config = dict(self.config, use_ssl=True, verify_ssl=False)

        with self.assertLogs('ad_user_sync.ldap_client', level='WARNING'):
            LDAPClient(config)._tls_settings()

        mock_tls.assert_called_once_with(validate=ssl.CERT_NONE)

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_connect_success(self, mock_server, mock_connection_class):
        """Test opening and binding a connection."""
        connection = make_connection()
        mock_connection_class.return_value = connection

        client = LDAPClient(self.config)
        self.assertTrue(client.connect())

        self.assertTrue(client.connected)
        mock_connection_class.assert_called_once_with(
            mock_server.return_value,
            user='CN=svc-sync,OU=Service,DC=example,DC=com',
            password='password123',
            auto_bind=False,
            receive_timeout=10
        )
        connection.bind.assert_called_once_with()
        connection.start_tls.assert_not_called()

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_connect_with_start_tls(self, mock_server, mock_connection_class):
        connection = make_connection()
        mock_connection_class.return_value = connection

        client = LDAPClient(dict(self.config, start_tls=True))
        with patch('ad_user_sync.ldap_client.Tls'):
            client.connect()

        connection.start_tls.assert_called_once_with()

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_bind_failure(self, mock_server, mock_connection_class):
        """Test that a rejected bind raises and releases the connection."""
        connection = make_connection(bind_ok=False)
        connection.result = {'result': 49, 'description': 'invalidCredentials'}
        mock_connection_class.return_value = connection

        client = LDAPClient(self.config)
        with self.assertRaises(LDAPConnectionError) as ctx:
            client.connect()

        self.assertIn('Bind failed', str(ctx.exception))
        self.assertFalse(client.connected)
        self.assertIsNone(client.connection)
        connection.unbind.assert_called_once_with()

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_server_unreachable(self, mock_server, mock_connection_class):
        connection = make_connection()
        connection.open.side_effect = LDAPSocketOpenError("socket connection error")
        mock_connection_class.return_value = connection

        client = LDAPClient(self.config)
        with self.assertRaises(LDAPConnectionError):
            client.connect()
        self.assertFalse(client.connected)

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_context_manager_unbinds(self, mock_server, mock_connection_class):
        """Test that the connection is released even when the body raises."""
        connection = make_connection()
        mock_connection_class.return_value = connection

        with self.assertRaises(RuntimeError):
            with LDAPClient(self.config) as client:
                self.assertTrue(client.connected)
                raise RuntimeError("boom")

        connection.unbind.assert_called_once_with()
        self.assertFalse(client.connected)

    @patch('ad_user_sync.ldap_client.Connection')
    @patch('ad_user_sync.ldap_client.Server')
    def test_test_connection(self, mock_server, mock_connection_class):
        connection = make_connection()
        connection.search.return_value = True
        mock_connection_class.return_value = connection
        self.assertTrue(LDAPClient(self.config).test_connection())

        mock_connection_class.return_value = make_connection(bind_ok=False)
        self.assertFalse(LDAPClient(self.config).test_connection())


class TestDirectoryOperations(unittest.TestCase):
    """Test cases for searching and modifying entries."""

    def setUp(self):
        self.config = {
            'server_url': 'ldap://dc.example.com:389',
            'bind_dn': 'CN=svc-sync,OU=Service,DC=example,DC=com',
            'bind_password': 'password123',
            'search_base': 'OU=Users,DC=example,DC=com'
        }
        self.connection = make_connection()
        self.client = LDAPClient(self.config)
        self.client.connection = self.connection
        self.client._bound = True

    def test_find_entry(self):
        self.connection.search.return_value = True
        self.connection.entries = [make_entry(
            'CN=John Doe,OU=Users,DC=example,DC=com',
            {'sAMAccountName': ['jdoe'], 'mail': ['jdoe@example.com'], 'mobile': []}
        )]

        entry = self.client.find_entry('(sAMAccountName=jdoe)', ['sAMAccountName', 'mail', 'mobile'])

        self.assertEqual(entry['dn'], 'CN=John Doe,OU=Users,DC=example,DC=com')
        self.assertEqual(entry['attributes'], {
            'samaccountname': 'jdoe',
            'mail': 'jdoe@example.com',
            'mobile': None
        })
        self.connection.search.assert_called_once_with(
            search_base='OU=Users,DC=example,DC=com',
            search_filter='(sAMAccountName=jdoe)',
            search_scope=SUBTREE,
            attributes=['sAMAccountName', 'mail', 'mobile'],
            size_limit=1
        )

    def test_find_entry_no_match(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 0, 'description': 'success'}
        self.assertIsNone(self.client.find_entry('(sAMAccountName=ghost)', ['mail']))

    def test_find_entry_missing_base_is_no_match(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 32, 'description': 'noSuchObject'}
        self.assertIsNone(self.client.find_entry('(sAMAccountName=jdoe)', ['mail']))

    def test_find_entry_size_limit_returns_first(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 4, 'description': 'sizeLimitExceeded'}
        self.connection.entries = [make_entry('CN=first,DC=example,DC=com', {'mail': ['a@x.com']})]

        entry = self.client.find_entry('(mail=*)', ['mail'])
        self.assertEqual(entry['dn'], 'CN=first,DC=example,DC=com')

    def test_find_entry_failure(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 1, 'description': 'operationsError'}
        with self.assertRaises(LDAPQueryError):
            self.client.find_entry('(sAMAccountName=jdoe)', ['mail'])

    def test_find_entry_requires_connection(self):
        client = LDAPClient(self.config)
        with self.assertRaises(LDAPQueryError):
            client.find_entry('(sAMAccountName=jdoe)', ['mail'])

    def test_modify_entry(self):
        self.connection.modify.return_value = True

        self.client.modify_entry('CN=jdoe,DC=example,DC=com',
                                 {'mail': 'new@x.com', 'info': 'BirthDate:2020-01-01'})

        self.connection.modify.assert_called_once_with('CN=jdoe,DC=example,DC=com', {
            'mail': [(MODIFY_REPLACE, ['new@x.com'])],
            'info': [(MODIFY_REPLACE, ['BirthDate:2020-01-01'])]
        })

    def test_modify_entry_rejected(self):
        self.connection.modify.return_value = False
        self.connection.result = {'result': 50, 'description': 'insufficientAccessRights', 'message': ''}

        with self.assertRaises(LDAPModifyError) as ctx:
            self.client.modify_entry('CN=jdoe,DC=example,DC=com', {'mail': 'new@x.com'})
        self.assertIn('insufficientAccessRights', str(ctx.exception))

    def test_modify_entry_without_changes(self):
        self.client.modify_entry('CN=jdoe,DC=example,DC=com', {})
        self.connection.modify.assert_not_called()


if __name__ == '__main__':
    unittest.main()
