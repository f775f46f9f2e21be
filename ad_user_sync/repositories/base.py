"""
Repository interfaces for AD User Sync.

The synchronizer depends on two separate capabilities: a source that can list
every user, and a target that can look up and update one user at a time.
Implementations only provide the side they actually support.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ad_user_sync.models import User


class SourceRepository(ABC):
    """Authoritative store the synchronizer reads users from."""

    @abstractmethod
    def fetch_all_users(self) -> List[User]:
        """
        Get every user from the source of truth.

        Returns:
            Complete snapshot of source users

        Raises:
            Exception: On transport or query failure; a partial result is
                never returned
        """
        pass


class TargetRepository(ABC):
    """Store the synchronizer pushes differences into."""

    @abstractmethod
    def find_user(self, identifier: str) -> Optional[User]:
        """
        Look up a single user by identity value.

        Args:
            identifier: Value of the identity attribute

        Returns:
            The user as currently stored in the target, or None if not found

        Raises:
            Exception: On transport failure (never for "not found")
        """
        pass

    @abstractmethod
    def apply_update(self, user: User) -> int:
        """
        Write the mapped fields of a source user into the target.

        Args:
            user: Source user record

        Returns:
            Number of attributes written (0 if nothing changed or the user
            no longer exists in the target)

        Raises:
            Exception: If committing the changes fails
        """
        pass
