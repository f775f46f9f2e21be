"""
Relational source repository.

Reads the complete user table from the HR database with SQLAlchemy Core and
converts each row into a User record.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import column, create_engine, select, table, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ad_user_sync.models import USER_FIELDS, User
from ad_user_sync.repositories.base import SourceRepository


class SourceQueryError(Exception):
    """Raised when users cannot be read from the source database."""
    pass


class SqlSourceRepository(SourceRepository):
    """
    Source repository backed by a single database table or view.

    Every user field is read from the column of the same name unless the
    column map says otherwise; a field mapped to None is not selected.
    """

    def __init__(self, engine: Engine, table_name: str,
                 columns: Optional[Dict[str, Optional[str]]] = None,
                 schema: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the repository.

        Args:
            engine: SQLAlchemy engine for the source database
            table_name: Table (or view) holding the users
            columns: Optional field name to column name overrides
            schema: Optional database schema of the table
            logger: Logger to use (defaults to the module logger)
        """
        self.engine = engine
        self.table_name = table_name
        self.schema = schema
        self.logger = logger or logging.getLogger(__name__)

        overrides = columns or {}
        unknown = [name for name in overrides if name not in USER_FIELDS]
        if unknown:
            raise ValueError(f"Unknown user fields in column map: {', '.join(unknown)}")

        self.columns = {}
        for name in USER_FIELDS:
            column_name = overrides.get(name, name)
            if column_name:
                self.columns[name] = column_name

    @classmethod
    def from_config(cls, source_config: Dict[str, Any],
                    logger: Optional[logging.Logger] = None) -> 'SqlSourceRepository':
        """Create a repository (and its engine) from the 'source' config section."""
        engine = create_engine(source_config['url'], pool_pre_ping=True)
        return cls(
            engine,
            source_config['table'],
            columns=source_config.get('columns'),
            schema=source_config.get('schema'),
            logger=logger
        )

    def _build_query(self):
        column_names = sorted(set(self.columns.values()))
        users_table = table(self.table_name, *[column(name) for name in column_names],
                            schema=self.schema)
        return select(*[
            users_table.c[column_name].label(field_name)
            for field_name, column_name in self.columns.items()
        ])

    def fetch_all_users(self) -> List[User]:
        """
        Read every user from the source table.

        Raises:
            SourceQueryError: If the query fails
        """
        query = self._build_query()

        try:
            with self.engine.connect() as connection:
                rows = connection.execute(query).mappings().all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error retrieving users from database table {self.table_name}: {e}")
            raise SourceQueryError(f"Failed to read users from {self.table_name}: {e}") from e

        users = [self._row_to_user(row) for row in rows]
        self.logger.debug(f"Read {len(users)} rows from {self.table_name}")
        return users

    def _row_to_user(self, row) -> User:
        user = User()
        for field_name in self.columns:
            field = USER_FIELDS[field_name]
            value = row[field_name]
            try:
                field.set(user, value)
            except (TypeError, ValueError) as e:
                self.logger.warning(f"Ignoring unreadable {field_name} value {value!r}: {e}")
        return user

    def test_connection(self) -> bool:
        """
        Check that the source database answers a trivial query.

        Returns:
            True if the database is reachable, False otherwise
        """
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            self.logger.debug(f"Source database connection test failed: {e}")
            return False

    def close(self):
        """Release pooled database connections."""
        self.engine.dispose()
