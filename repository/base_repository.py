# repository/base_repository.py
# Version 03.00.00.00 dated 20261017
# Base repository pattern for data access layer

import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional, Dict, Any, Generator, Union

from logging_config import get_logger

logger = get_logger(__name__)


class DatabaseConnection:
    """
    Manages database connections and their lifecycle.

    Each DatabaseConnection is explicitly constructed and handed to the
    repositories that use it. It ensures:
    - Connections are properly configured (foreign keys, DELETE journal mode)
    - One connection per operation, usable from any thread
    - A single write lock so writers never interleave
    - Proper connection cleanup
    """

    def __init__(self, db_path: str = "photo_embeddings.db", auto_init: bool = True,
                 timeout: float = 10.0):
        # Worker threads may resolve relative paths differently; pin it down once
        self._db_path = os.path.abspath(db_path)
        self._timeout = timeout
        self.write_lock = threading.RLock()

        if auto_init:
            self._ensure_schema()

        logger.info(f"DatabaseConnection initialized with path: {self._db_path}")

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def get_connection(self, read_only: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection as a context manager.

        Args:
            read_only: If True, opens connection in read-only mode

        Yields:
            sqlite3.Connection: Database connection

        Example:
            with db_conn.get_connection() as conn:
                cur = conn.cursor()
                cur.execute("SELECT * FROM photo_embeddings")
        """
        conn = None
        try:
            if read_only:
                # SQLite URIs require forward slashes, even on Windows
                uri_path = self._db_path.replace('\\', '/')
                conn = sqlite3.connect(f"file:{uri_path}?mode=ro", uri=True,
                                       timeout=self._timeout, check_same_thread=False)
            else:
                conn = sqlite3.connect(self._db_path, timeout=self._timeout,
                                       check_same_thread=False)

            conn.execute("PRAGMA foreign_keys = ON")
            conn.row_factory = self._dict_factory

            yield conn

        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}", exc_info=True)
            if conn:
                try:
                    conn.rollback()
                except sqlite3.Error:
                    pass
            raise
        finally:
            if conn:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection: {e}")

    @staticmethod
    def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> Dict[str, Any]:
        """Convert row tuples to dictionaries using column names."""
        return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}

    def execute_script(self, script: str):
        """
        Execute a SQL script (schema setup, maintenance).

        Args:
            script: SQL script to execute
        """
        with self.write_lock, self.get_connection() as conn:
            conn.executescript(script)
            conn.commit()
        logger.info("SQL script executed successfully")

    def _ensure_schema(self):
        """
        Ensure database schema exists.

        The schema script only uses CREATE ... IF NOT EXISTS and INSERT OR IGNORE,
        so running it against an existing database is a no-op.
        """
        from .schema import get_schema_sql, get_schema_version

        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        with self.write_lock, self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode=DELETE")
            conn.executescript(get_schema_sql())
            conn.commit()

        logger.info(f"Schema ready (version {get_schema_version()})")

    def validate_schema(self) -> bool:
        """
        Validate that database schema matches expected structure.

        Returns:
            bool: True if schema is valid, False otherwise
        """
        from .schema import get_expected_tables, get_expected_indexes

        try:
            with self.get_connection(read_only=True) as conn:
                cur = conn.cursor()

                cur.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                """)
                actual_tables = {row['name'] for row in cur.fetchall()}
                missing_tables = set(get_expected_tables()) - actual_tables
                if missing_tables:
                    logger.error(f"Missing tables: {missing_tables}")
                    return False

                cur.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='index' AND name NOT LIKE 'sqlite_%'
                """)
                actual_indexes = {row['name'] for row in cur.fetchall()}
                missing_indexes = set(get_expected_indexes()) - actual_indexes
                if missing_indexes:
                    logger.warning(f"Missing indexes (non-critical): {missing_indexes}")

                logger.info("Schema validation passed")
                return True

        except sqlite3.Error as e:
            logger.error(f"Schema validation failed: {e}", exc_info=True)
            return False

    def get_schema_version(self) -> str:
        """
        Get the current schema version from the database.

        Returns:
            str: Schema version string, or "unknown" if not found
        """
        try:
            with self.get_connection(read_only=True) as conn:
                cur = conn.cursor()
                cur.execute("""
                    SELECT version FROM schema_version
                    ORDER BY applied_at DESC, version DESC
                    LIMIT 1
                """)
                result = cur.fetchone()
                return result['version'] if result else "unknown"
        except sqlite3.Error:
            return "unknown"


class BaseRepository(ABC):
    """
    Abstract base class for all repositories.

    Repositories handle all database operations for a specific domain entity.
    This promotes:
    - Single Responsibility Principle
    - Testability (can swap in an in-memory store)
    - Clean separation between business logic and data access
    """

    def __init__(self, db_connection: Union[DatabaseConnection, str, None] = None):
        """
        Initialize repository with database connection.

        Args:
            db_connection: DatabaseConnection instance or database path.
                          If None, uses the configured default path.
        """
        if db_connection is None:
            from config import get_embedding_config
            db_connection = DatabaseConnection(get_embedding_config().storage.db_path)
        elif isinstance(db_connection, str):
            db_connection = DatabaseConnection(db_connection)

        self._db_connection = db_connection
        self.logger = get_logger(self.__class__.__name__)

    @property
    def db_connection(self) -> DatabaseConnection:
        return self._db_connection

    @contextmanager
    def connection(self, read_only: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection for repository operations.

        Args:
            read_only: Whether to open in read-only mode

        Yields:
            Database connection
        """
        with self._db_connection.get_connection(read_only=read_only) as conn:
            yield conn

    @abstractmethod
    def _table_name(self) -> str:
        """Return the primary table name this repository manages."""
        pass

    def count(self, where_clause: str = "", params: tuple = ()) -> int:
        """
        Count rows in the repository's table.

        Args:
            where_clause: Optional WHERE clause (without 'WHERE' keyword)
            params: Parameters for the where clause

        Returns:
            Number of matching rows
        """
        sql = f"SELECT COUNT(*) as count FROM {self._table_name()}"
        if where_clause:
            sql += f" WHERE {where_clause}"

        with self.connection(read_only=True) as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            result = cur.fetchone()
            return result['count'] if result else 0

    def find_by_id(self, id_value: Any, id_column: str = "id") -> Optional[Dict[str, Any]]:
        """
        Find a single row by ID.

        Args:
            id_value: The ID value to search for
            id_column: Name of the ID column (default: "id")

        Returns:
            Dictionary representing the row, or None if not found
        """
        sql = f"SELECT * FROM {self._table_name()} WHERE {id_column} = ?"

        with self.connection(read_only=True) as conn:
            cur = conn.cursor()
            cur.execute(sql, (id_value,))
            return cur.fetchone()

    def delete_by_id(self, id_value: Any, id_column: str = "id") -> bool:
        """
        Delete a row by ID. Serialized through the connection's write lock.

        Args:
            id_value: The ID value
            id_column: Name of the ID column

        Returns:
            True if a row was deleted
        """
        sql = f"DELETE FROM {self._table_name()} WHERE {id_column} = ?"

        with self._db_connection.write_lock, self.connection() as conn:
            cur = conn.cursor()
            cur.execute(sql, (id_value,))
            conn.commit()
            deleted = cur.rowcount > 0

        if deleted:
            self.logger.debug(f"Deleted row with {id_column}={id_value} from {self._table_name()}")

        return deleted
