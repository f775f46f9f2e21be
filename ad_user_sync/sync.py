"""
Core reconciliation logic for AD User Sync.

The SyncService reads every user from the source repository, looks each one
up in the target repository by the configured identity field, compares the
mapped fields and pushes the source values when they differ.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ad_user_sync.models import User, UserField, resolve_field
from ad_user_sync.repositories.base import SourceRepository, TargetRepository


class Decision(Enum):
    """Outcome of comparing a source user with the target."""

    NO_TARGET = 'no-target'
    UP_TO_DATE = 'up-to-date'
    NEEDS_UPDATE = 'needs-update'


@dataclass
class SyncReport:
    """Counters for a single reconciliation run."""

    dry_run: bool = True
    total: int = 0
    skipped: int = 0
    no_target: int = 0
    up_to_date: int = 0
    pending_updates: int = 0
    updated: int = 0
    nothing_written: int = 0
    update_failed: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def runtime_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def log_summary(self, logger: logging.Logger):
        """Log final synchronization statistics."""
        runtime = self.runtime_seconds
        runtime_str = f"{runtime:.2f} seconds"
        if runtime > 60:
            runtime_str = f"{int(runtime // 60)}m {runtime % 60:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Mode: {'dry run' if self.dry_run else 'commit'}")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Source users: {self.total}")
        logger.info(f"Skipped (no identifier): {self.skipped}")
        logger.info(f"Not found in target: {self.no_target}")
        logger.info(f"Up to date: {self.up_to_date}")
        if self.dry_run:
            logger.info(f"Pending updates: {self.pending_updates}")
        else:
            logger.info(f"Updated: {self.updated}")
            logger.info(f"Nothing written on apply: {self.nothing_written}")
            logger.info(f"Update failures: {self.update_failed}")


def _normalize(value: Any) -> Any:
    """Put a field value in comparable form: blank text is absent, datetimes compare by day."""
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, datetime):
        return value.date()
    return value


class SyncService:
    """Reconciles users from a source repository into a target repository."""

    def __init__(self, source: SourceRepository, target: TargetRepository,
                 field_mappings: Dict[str, str], search_by: str = 'sam_account_name',
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the service.

        Args:
            source: Repository providing the authoritative users
            target: Repository receiving updates
            field_mappings: Target attribute name to user field name
            search_by: User field used to find the matching target user
            logger: Logger to use (defaults to the module logger)
        """
        self.source = source
        self.target = target
        self.logger = logger or logging.getLogger(__name__)

        self.identity_field = resolve_field(search_by)
        if self.identity_field is None:
            raise ValueError(f"Unknown identity field: {search_by}")

        self._field_mappings = dict(field_mappings)
        self._compared_fields: List[Tuple[str, UserField]] = []
        for attribute, field_name in self._field_mappings.items():
            field = resolve_field(field_name)
            if field is None:
                self.logger.debug(f"Ignoring mapping {attribute} -> {field_name}: unknown user field")
                continue
            self._compared_fields.append((attribute, field))

        self.last_report: Optional[SyncReport] = None

    @property
    def field_mappings(self) -> Dict[str, str]:
        return dict(self._field_mappings)

    def get_identifier(self, user: User) -> str:
        """Return the identity value of a user, or '' when it is missing."""
        return self.identity_field.get_text(user)

    def need_update(self, source: User, target: User) -> bool:
        """Check whether any mapped field differs between source and target."""
        for attribute, field in self._compared_fields:
            source_value = _normalize(field.get(source))
            target_value = _normalize(field.get(target))
            if source_value != target_value:
                self.logger.debug(f"Field {field.name} ({attribute}) differs: "
                                  f"'{target_value}' -> '{source_value}'")
                return True
        return False

    def decide(self, source: User, target: Optional[User]) -> Decision:
        if target is None:
            return Decision.NO_TARGET
        if self.need_update(source, target):
            return Decision.NEEDS_UPDATE
        return Decision.UP_TO_DATE

    def run(self, dry_run: bool = True) -> SyncReport:
        """
        Run one reconciliation pass over all source users.

        Args:
            dry_run: If True, report decisions without writing to the target

        Returns:
            Statistics for the run

        Raises:
            Exception: Any failure reading the source, looking up a user or
                applying an update is logged and re-raised
        """
        report = SyncReport(dry_run=dry_run, start_time=datetime.now())
        self.last_report = report

        try:
            source_users = self.source.fetch_all_users()
            self.logger.info(f"Retrieved {len(source_users)} users from source database")

            for source_user in source_users:
                report.total += 1
                self._sync_user(source_user, dry_run, report)

        except Exception as e:
            self.logger.error(f"Error during user synchronization: {e}", exc_info=True)
            raise
        finally:
            report.end_time = datetime.now()

        report.log_summary(self.logger)
        return report

    def _sync_user(self, source_user: User, dry_run: bool, report: SyncReport):
        identifier = self.get_identifier(source_user)
        if not identifier:
            report.skipped += 1
            self.logger.warning(f"Skipping source user without {self.identity_field.name}: "
                                f"{source_user.full_name or source_user.employee_id or 'unknown'}")
            return

        try:
            target_user = self.target.find_user(identifier)
        except Exception as e:
            self.logger.error(f"Failed to look up user {identifier} in target: {e}")
            raise

        decision = self.decide(source_user, target_user)

        if decision is Decision.NO_TARGET:
            report.no_target += 1
            self.logger.warning(f"User {identifier} not found in target system")
            return

        if decision is Decision.UP_TO_DATE:
            report.up_to_date += 1
            self.logger.info(f"User {identifier} is up-to-date, no update required")
            return

        if dry_run:
            report.pending_updates += 1
            self.logger.info(f"User {identifier} needs update (dry run, not applied)")
            return

        self.logger.info(f"User {identifier} needs update")
        try:
            written = self.target.apply_update(source_user)
        except Exception as e:
            report.update_failed += 1
            self.logger.error(f"Failed to update user {identifier}: {e}")
            raise

        if written:
            report.updated += 1
        else:
            # Entry gone since the lookup, or every differing value was skipped on write
            report.nothing_written += 1
            self.logger.warning(f"User {identifier} differs from the target but no attribute was written")
