"""
Directory (LDAP / Active Directory) target repository.

Looks users up by their identity attribute and writes mapped attributes back,
one modify request per user. Every operation opens its own LDAP session and
releases it before returning.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ldap3.utils.conv import escape_filter_chars

from ad_user_sync.attributes import (
    FormatError,
    format_attribute_value,
    is_protected_attribute,
    is_valid_attribute_value,
    parse_attribute_value,
)
from ad_user_sync.ldap_client import LDAPClient
from ad_user_sync.logging_setup import SecurityAuditLogger, security_logger
from ad_user_sync.models import User, UserField, resolve_field
from ad_user_sync.repositories.base import TargetRepository


class LdapTargetRepository(TargetRepository):
    """Target repository that reads and updates user entries in a directory."""

    def __init__(self, ldap_config: Dict[str, Any], field_mappings: Dict[str, str],
                 identity_field: str = 'sam_account_name',
                 client_factory: Optional[Callable[[], LDAPClient]] = None,
                 logger: Optional[logging.Logger] = None,
                 audit_logger: Optional[SecurityAuditLogger] = None):
        """
        Initialize the repository.

        Args:
            ldap_config: LDAP configuration dictionary
            field_mappings: Directory attribute name to user field name
            identity_field: User field holding the value of the identity attribute
            client_factory: Returns a new, not yet connected LDAPClient
            logger: Logger to use (defaults to the module logger)
            audit_logger: Audit trail for directory writes
        """
        self.logger = logger or logging.getLogger(__name__)
        self.audit_logger = audit_logger or security_logger
        self.ldap_config = ldap_config
        self.identity_attribute = ldap_config.get('identity_attribute', 'sAMAccountName')
        self.user_filter = ldap_config.get('user_filter')

        self.identity_field = resolve_field(identity_field)
        if self.identity_field is None:
            raise ValueError(f"Unknown identity field: {identity_field}")

        self.field_mappings = dict(field_mappings)
        self._fields: Dict[str, UserField] = {}
        for attribute, field_name in self.field_mappings.items():
            field = resolve_field(field_name)
            if field is None:
                self.logger.debug(f"Ignoring mapping {attribute} -> {field_name}: unknown user field")
                continue
            self._fields[attribute] = field

        self._client_factory = client_factory or self._create_client

    def _create_client(self) -> LDAPClient:
        return LDAPClient(self.ldap_config, logger=self.logger)

    def _build_filter(self, identifier: str) -> str:
        condition = f"({self.identity_attribute}={escape_filter_chars(identifier)})"
        if self.user_filter:
            return f"(&{self.user_filter}{condition})"
        return condition

    def _mapped_attributes(self) -> List[str]:
        return list(self._fields)

    def find_user(self, identifier: str) -> Optional[User]:
        """
        Find a user entry by identity value and map it to a User.

        Returns:
            The directory's view of the user, or None if no entry matches

        Raises:
            LDAPConnectionError, LDAPQueryError: On directory failures
        """
        try:
            with self._client_factory() as client:
                entry = client.find_entry(self._build_filter(identifier), self._mapped_attributes())
        except Exception as e:
            self.logger.error(f"Error finding user {identifier} in directory: {e}")
            raise

        if entry is None:
            return None

        return self._map_to_user(entry['attributes'])

    def _map_to_user(self, attributes: Dict[str, Optional[str]]) -> User:
        user = User()
        for attribute, field in self._fields.items():
            key = attribute.lower()
            if key not in attributes:
                continue
            value = parse_attribute_value(attribute, attributes[key],
                                          as_date=field.is_date, log=self.logger)
            field.set(user, value)
        return user

    def apply_update(self, user: User) -> int:
        """
        Write changed, writable attributes of a source user to its directory entry.

        Protected attributes, absent values, values that cannot be formatted or
        fail validation, and values already stored are skipped. Remaining
        changes are committed in a single modify request.

        Returns:
            Number of attributes written

        Raises:
            ValueError: If the user has no identity value
            LDAPModifyError: If the directory rejects the change
        """
        identifier = self.identity_field.get_text(user)
        if not identifier:
            raise ValueError(f"{self.identity_field.name} is required to update a directory entry")

        changes: Dict[str, str] = {}
        try:
            with self._client_factory() as client:
                entry = client.find_entry(self._build_filter(identifier), self._mapped_attributes())
                if entry is None:
                    self.logger.warning(f"User {identifier} not found in directory, nothing updated")
                    return 0

                changes = self._stage_changes(user, entry['attributes'])
                if not changes:
                    self.logger.info(f"User {identifier} already matches the directory, nothing to write")
                    return 0

                client.modify_entry(entry['dn'], changes)
        except Exception as e:
            self.logger.error(f"Error updating user {identifier} in directory: {e}")
            if changes:
                self.audit_logger.log_directory_update(identifier, list(changes), False)
            raise

        self.audit_logger.log_directory_update(identifier, list(changes), True)
        self.logger.info(f"User {identifier} updated successfully ({len(changes)} attributes)")
        return len(changes)

    def _stage_changes(self, user: User, current: Dict[str, Optional[str]]) -> Dict[str, str]:
        """Work out which attribute values have to be written for a user."""
        changes = {}
        for attribute, field in self._fields.items():
            if is_protected_attribute(attribute):
                continue

            value = field.get(user)
            if value is None:
                continue

            try:
                formatted = format_attribute_value(attribute, value)
            except FormatError as e:
                self.logger.warning(f"Skipping attribute {attribute}: {e}")
                continue

            if not is_valid_attribute_value(attribute, formatted):
                self.logger.debug(f"Skipping attribute {attribute}: value {formatted!r} is not valid")
                continue

            if current.get(attribute.lower()) == formatted:
                continue

            changes[attribute] = formatted
            self.logger.debug(f"Preparing to update {attribute} to {formatted}")

        return changes
