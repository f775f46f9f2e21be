"""
User record and field registry for AD User Sync.

The registry maps field names used in configuration (field mappings, the
search_by key, source column maps) to typed accessor/mutator pairs, so the
rest of the application never looks up attributes by arbitrary strings.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional


@dataclass
class User:
    """A single user as seen by either the source database or the directory."""

    sam_account_name: Optional[str] = None
    employee_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_name: Optional[str] = None
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    internal_phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    additional_phone: Optional[str] = None
    email: Optional[str] = None
    hire_date: Optional[date] = None


class UserField:
    """Typed accessor/mutator pair for one field of User."""

    def __init__(self, name: str, getter: Callable[[User], Any],
                 setter: Callable[[User, Any], None], is_date: bool = False):
        self.name = name
        self.getter = getter
        self.setter = setter
        self.is_date = is_date

    def get(self, user: User) -> Any:
        return self.getter(user)

    def get_text(self, user: User) -> str:
        """Return the value as trimmed text, or '' when it is absent or blank."""
        value = self.getter(user)
        if value is None:
            return ''
        return str(value).strip()

    def set(self, user: User, value: Any) -> None:
        self.setter(user, self.coerce(value))

    def coerce(self, value: Any) -> Any:
        """Normalise a raw value to the field's type (str or date)."""
        if value is None:
            return None
        if self.is_date:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            if isinstance(value, str):
                # ISO text is what SQLite and most drivers hand back for DATE columns
                return datetime.fromisoformat(value.strip()).date() if value.strip() else None
            raise TypeError(f"Field {self.name} expects a date, got {type(value).__name__}")
        return value if isinstance(value, str) else str(value)

    def __repr__(self):
        return f"UserField({self.name!r}, is_date={self.is_date})"


def _set_sam_account_name(user, value):
    user.sam_account_name = value


def _set_employee_id(user, value):
    user.employee_id = value


def _set_first_name(user, value):
    user.first_name = value


def _set_last_name(user, value):
    user.last_name = value


def _set_middle_name(user, value):
    user.middle_name = value


def _set_full_name(user, value):
    user.full_name = value


def _set_job_title(user, value):
    user.job_title = value


def _set_department(user, value):
    user.department = value


def _set_internal_phone(user, value):
    user.internal_phone = value


def _set_mobile_phone(user, value):
    user.mobile_phone = value


def _set_additional_phone(user, value):
    user.additional_phone = value


def _set_email(user, value):
    user.email = value


def _set_hire_date(user, value):
    user.hire_date = value


USER_FIELDS: Dict[str, UserField] = {
    field.name: field for field in (
        UserField('sam_account_name', lambda u: u.sam_account_name, _set_sam_account_name),
        UserField('employee_id', lambda u: u.employee_id, _set_employee_id),
        UserField('first_name', lambda u: u.first_name, _set_first_name),
        UserField('last_name', lambda u: u.last_name, _set_last_name),
        UserField('middle_name', lambda u: u.middle_name, _set_middle_name),
        UserField('full_name', lambda u: u.full_name, _set_full_name),
        UserField('job_title', lambda u: u.job_title, _set_job_title),
        UserField('department', lambda u: u.department, _set_department),
        UserField('internal_phone', lambda u: u.internal_phone, _set_internal_phone),
        UserField('mobile_phone', lambda u: u.mobile_phone, _set_mobile_phone),
        UserField('additional_phone', lambda u: u.additional_phone, _set_additional_phone),
        UserField('email', lambda u: u.email, _set_email),
        UserField('hire_date', lambda u: u.hire_date, _set_hire_date, is_date=True),
    )
}


def normalize_field_name(name: str) -> str:
    """Convert a PascalCase/camelCase field name (e.g. 'SamAccountName') to snake_case."""
    name = name.strip()
    name = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', name)
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    return name.lower()


def resolve_field(name: str) -> Optional[UserField]:
    """
    Look up a field by name.

    Accepts both the registry name ('email') and the PascalCase spelling
    ('Email') used by older configurations.

    Returns:
        The matching UserField, or None if the name is unknown
    """
    if not name:
        return None
    field = USER_FIELDS.get(name)
    if field is None:
        field = USER_FIELDS.get(normalize_field_name(name))
    return field
