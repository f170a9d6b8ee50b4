"""Database validation utilities for the SQLite document store."""

import sqlite3
from pathlib import Path
from typing import Optional


class DatabaseValidationError(Exception):
    """Raised when database validation fails."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


# Required tables for a valid Nest Finance document database
REQUIRED_TABLES = {"documents", "profiles"}

# Required columns in the documents table
REQUIRED_DOCUMENT_COLUMNS = {"user_id", "collection", "id", "data", "version"}


def validate_database(db_path: Path) -> None:
    """Validate that a database file is a compatible document database.

    Missing files and empty databases are accepted; the schema is created
    on connect.

    Args:
        db_path: Path to the database file

    Raises:
        DatabaseValidationError: If the database is not compatible
    """
    if not db_path.exists():
        return

    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseValidationError(
            "Not a valid database file",
            f"Could not open as SQLite database: {e}"
        )

    try:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )
        existing_tables = {row[0] for row in cursor.fetchall()}

        if not existing_tables:
            return

        missing_required = REQUIRED_TABLES - existing_tables
        if missing_required:
            raise DatabaseValidationError(
                "Incompatible database format",
                f"This database is missing required tables: {', '.join(sorted(missing_required))}. "
                "It may not be a Nest Finance database file."
            )

        cursor = conn.execute("PRAGMA table_info(documents)")
        existing_columns = {row[1] for row in cursor.fetchall()}

        missing_columns = REQUIRED_DOCUMENT_COLUMNS - existing_columns
        if missing_columns:
            raise DatabaseValidationError(
                "Incompatible database schema",
                f"The documents table is missing required columns: {', '.join(sorted(missing_columns))}."
            )

    except sqlite3.Error as e:
        raise DatabaseValidationError(
            "Database error during validation",
            f"Could not read database structure: {e}"
        )
    finally:
        conn.close()
