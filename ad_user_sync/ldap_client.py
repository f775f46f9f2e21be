"""
ldap3 wrapper used by the directory repository.

One LDAPClient is one bound session against the domain controller. The
repository opens a fresh session per operation with ``with LDAPClient(...)``
and only needs two calls on it: find_entry() to read a user entry and
modify_entry() to replace attribute values in a single request.
"""

import logging
import ssl
from typing import Any, Dict, List, Optional

from ldap3 import ALL, MODIFY_REPLACE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException

# Search result codes that still mean "the search itself worked"
_SEARCH_OK_RESULTS = (
    0,   # success
    4,   # sizeLimitExceeded - more than one match, first entry is still returned
    32,  # noSuchObject - treated as "no entry"
)


class LDAPConnectionError(Exception):
    """The directory could not be reached, or rejected the service account bind."""
    pass


class LDAPQueryError(Exception):
    """A search against the directory failed."""
    pass


class LDAPModifyError(Exception):
    """Raised when committing attribute changes to an entry fails."""
    pass


class LDAPClient:
    """
    A single bound directory session.

    Use it as a context manager so the connection is unbound on every exit
    path, including when an operation raises:

        with LDAPClient(config) as client:
            entry = client.find_entry('(sAMAccountName=jdoe)', ['mail'])
    """

    def __init__(self, config: Dict[str, Any], logger: Optional[logging.Logger] = None):
        """
        Args:
            config: The 'ldap' configuration section
            logger: Logger to use (defaults to the module logger)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.config = config

        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.search_base = config.get('search_base', '')

        # ldaps:// implies SSL unless use_ssl says otherwise
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = bool(config.get('start_tls', False))
        self.verify_ssl = bool(config.get('verify_ssl', True))
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.server = None
        self.connection = None
        self._bound = False

    @property
    def connected(self) -> bool:
        return self._bound

    def connect(self) -> bool:
        """
        Open the connection, negotiate StartTLS if configured and bind.

        This is a single attempt; a failure leaves no half-open connection behind.

        Raises:
            LDAPConnectionError: If any step fails
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._tls_settings(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Invalid LDAP server settings for {self.server_url}: {e}")

        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )

        try:
            self._open_and_bind()
        except LDAPException as e:
            self._release_connection()
            raise LDAPConnectionError(f"Failed to connect to LDAP server {self.server_url}: {e}")
        except LDAPConnectionError:
            self._release_connection()
            raise

        self._bound = True
        self.logger.debug(f"Bound to {self.server_url} as {self.bind_dn}")
        return True

    def _open_and_bind(self):
        conn = self.connection
        if not conn.open():
            raise LDAPConnectionError(f"Could not open connection to {self.server_url}: {conn.result}")

        if self.start_tls and not self.use_ssl:
            if not conn.start_tls():
                raise LDAPConnectionError(f"StartTLS negotiation failed: {conn.result}")
            self.logger.debug("StartTLS negotiated")

        if not conn.bind():
            raise LDAPConnectionError(f"Bind failed for {self.bind_dn}: {conn.result}")

    def _release_connection(self):
        """Drop a half-open connection after a failed connect."""
        if self.connection is None:
            return
        try:
            self.connection.unbind()
        except LDAPException as e:
            self.logger.debug(f"Ignoring error while releasing failed connection: {e}")
        self.connection = None

    def _tls_settings(self) -> Optional[Tls]:
        """Build the ldap3 Tls object, or None for plain LDAP without StartTLS."""
        if not (self.use_ssl or self.start_tls):
            return None

        options: Dict[str, Any] = {
            'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE
        }
        if not self.verify_ssl:
            self.logger.warning(f"Certificate verification is disabled for {self.server_url}")

        if self.ca_cert_file:
            options['ca_certs_file'] = self.ca_cert_file

        # Client certificate, only used when both halves are configured
        if self.cert_file and self.key_file:
            options['local_certificate_file'] = self.cert_file
            options['local_private_key_file'] = self.key_file

        try:
            return Tls(**options)
        except Exception as e:
            raise LDAPConnectionError(f"Invalid TLS settings: {e}")

    def disconnect(self):
        """Unbind and forget the connection. Safe to call more than once."""
        if self.connection is None or not self._bound:
            return
        try:
            self.connection.unbind()
            self.logger.debug(f"Unbound from {self.server_url}")
        except Exception as e:
            self.logger.warning(f"Error while unbinding from {self.server_url}: {e}")
        finally:
            self._bound = False
            self.connection = None

    def find_entry(self, search_filter: str, attributes: List[str]) -> Optional[Dict[str, Any]]:
        """
        Find the first entry under the search base matching a filter.

        Args:
            search_filter: LDAP filter (values must already be escaped)
            attributes: Attribute names to load

        Returns:
            Dictionary with 'dn' and 'attributes' (lower-cased attribute name to
            first value as string), or None when nothing matches

        Raises:
            LDAPQueryError: If the search fails
        """
        if not self._bound:
            raise LDAPQueryError("find_entry called without a bound connection")

        self.logger.debug(f"Searching {self.search_base} for {search_filter}")

        try:
            found = self.connection.search(
                search_base=self.search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes or [],
                size_limit=1
            )
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP search failed for {search_filter}: {e}")

        if not found and self.connection.result.get('result') not in _SEARCH_OK_RESULTS:
            raise LDAPQueryError(f"LDAP search for {search_filter} returned {self.connection.result}")

        if not self.connection.entries:
            return None

        first = self.connection.entries[0]
        values = {
            name.lower(): (str(raw[0]) if raw else None)
            for name, raw in first.entry_attributes_as_dict.items()
        }
        return {'dn': str(first.entry_dn), 'attributes': values}

    def modify_entry(self, dn: str, changes: Dict[str, str]) -> None:
        """
        Replace attribute values on an entry in a single modify request.

        Args:
            dn: Distinguished name of the entry
            changes: Attribute name to new value

        Raises:
            LDAPModifyError: If the directory rejects the change
        """
        if not changes:
            return
        if not self._bound:
            raise LDAPModifyError("modify_entry called without a bound connection")

        modifications = {
            attribute: [(MODIFY_REPLACE, [value])]
            for attribute, value in changes.items()
        }

        try:
            accepted = self.connection.modify(dn, modifications)
        except LDAPException as e:
            raise LDAPModifyError(f"Modify of {dn} failed: {e}")

        if not accepted:
            result = self.connection.result or {}
            raise LDAPModifyError(f"Modify of {dn} rejected: "
                                  f"{result.get('description')} {result.get('message', '')}".strip())

    def test_connection(self) -> bool:
        """Bind and read the root DSE; returns False instead of raising."""
        try:
            if not self._bound:
                self.connect()

            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope='BASE',
                attributes=['namingContexts'],
                size_limit=1
            )
        except Exception as e:
            self.logger.debug(f"LDAP connection test against {self.server_url} failed: {e}")
            return False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
