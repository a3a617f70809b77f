"""
Base migration class

Every file under versions/ defines one subclass of BaseMigration
"""

import sqlite3
from abc import ABC, abstractmethod


class BaseMigration(ABC):
    """
    Base class for schema migrations

    Subclasses set a unique 4-digit `version`, a human readable
    `description`, and implement up(). down() is used by
    MigrationRunner.rollback_to() and may be left as a no-op for
    migrations that cannot be reverted.
    """

    version: str = ""
    description: str = ""

    @abstractmethod
    def up(self, cursor: sqlite3.Cursor) -> None:
        """Apply the migration"""

    def down(self, cursor: sqlite3.Cursor) -> None:
        """Revert the migration"""

    def __repr__(self) -> str:
        return f"<Migration {self.version}: {self.description}>"
