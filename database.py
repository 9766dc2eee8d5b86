"""
Database Connection Management with Connection Pooling and Transactions
SQLite storage for rules and alerts.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Tuple, Any
from queue import Queue, Empty
from pathlib import Path

from exceptions import (
    DatabaseError,
    ConnectionPoolExhaustedError,
    TransactionError,
    QueryExecutionError
)


logger = logging.getLogger("HomeGuardDatabase")

SCHEMA_VERSION = 2

IN_MEMORY = ":memory:"


class DatabaseConnection:
    """
    Wrapper for a pooled SQLite connection with transaction support.
    """

    def __init__(self, connection: sqlite3.Connection, pool: 'SQLitePool'):
        self.connection = connection
        self.pool = pool
        self.in_transaction = False

    def execute(self, query: str, params: Optional[Tuple] = None) -> sqlite3.Cursor:
        """
        Execute a query with parameters.

        Raises:
            QueryExecutionError: If query execution fails
        """
        try:
            cursor = self.connection.cursor()
            if params:
                return cursor.execute(query, params)
            return cursor.execute(query)
        except sqlite3.Error as e:
            raise QueryExecutionError(
                f"Query execution failed: {e}",
                component="DatabaseConnection",
                context={"query": query[:100]}
            )

    def executemany(self, query: str, params_list: List[Tuple]) -> sqlite3.Cursor:
        """
        Execute a query with multiple parameter sets.

        Raises:
            QueryExecutionError: If query execution fails
        """
        try:
            cursor = self.connection.cursor()
            return cursor.executemany(query, params_list)
        except sqlite3.Error as e:
            raise QueryExecutionError(
                f"Batch query execution failed: {e}",
                component="DatabaseConnection",
                context={"query": query[:100], "batch_size": len(params_list)}
            )

    def commit(self) -> None:
        try:
            self.connection.commit()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(f"Transaction commit failed: {e}", component="DatabaseConnection")

    def rollback(self) -> None:
        try:
            self.connection.rollback()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(f"Transaction rollback failed: {e}", component="DatabaseConnection")

    def close(self) -> None:
        """Return connection to pool."""
        if self.in_transaction:
            logger.warning("Closing connection with active transaction - rolling back")
            self.rollback()
        self.pool.return_connection(self.connection)


class SQLitePool:
    """
    Thread-safe connection pool for SQLite.

    An in-memory database is private to its connection, so ``:memory:``
    pools always hold exactly one connection.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: int = 5,
        timeout: float = 30.0
    ):
        self.db_path = db_path
        self.max_connections = 1 if db_path == IN_MEMORY else max_connections
        self.timeout = timeout

        self._pool: Queue = Queue(maxsize=self.max_connections)
        self._all_connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        if self.db_path != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        for _ in range(self.max_connections):
            conn = self._create_connection()
            self._all_connections.append(conn)
            self._pool.put(conn)

        logger.info(f"Initialized SQLite pool for {self.db_path} with {self.max_connections} connections")

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != IN_MEMORY:
                conn.execute("PRAGMA journal_mode = WAL")
            return conn
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create SQLite connection: {e}", component="SQLitePool")

    def get_connection(self) -> DatabaseConnection:
        if self._closed:
            raise DatabaseError("Connection pool is closed", component="SQLitePool")
        try:
            conn = self._pool.get(timeout=self.timeout)
        except Empty:
            raise ConnectionPoolExhaustedError(
                f"Connection pool exhausted (max: {self.max_connections})",
                component="SQLitePool"
            )
        return DatabaseConnection(conn, self)

    def return_connection(self, connection: sqlite3.Connection) -> None:
        if not self._closed:
            self._pool.put(connection)

    def close_all(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for conn in self._all_connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.error(f"Error closing connection: {e}")
            self._all_connections.clear()
            logger.info("SQLite connection pool closed")


class DatabaseManager:
    """
    Owns the connection pool and the schema.
    """

    def __init__(self, config: Any):
        """
        Args:
            config: DatabaseConfig (``path``, ``max_connections``, ``connection_timeout``)
        """
        self.config = config
        self.pool = SQLitePool(
            config.path,
            max_connections=config.max_connections,
            timeout=config.connection_timeout
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS rules (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    condition_type TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    definition TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS alerts (
                    id TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL,
                    event_id TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    degraded INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    full_json TEXT NOT NULL
                )
            ''')

            row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
            current = row[0] or 0

            if current < 2:
                self._apply_migration_v2(conn)

            if current < SCHEMA_VERSION:
                conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
                logger.info(f"Database schema at version {SCHEMA_VERSION}")

    def _apply_migration_v2(self, conn: DatabaseConnection) -> None:
        """Indexes for alert history queries."""
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_created_at ON alerts(created_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_rule_id ON alerts(rule_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_event_id ON alerts(event_id)")

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Commits on success, rolls back and raises ``TransactionError`` on any
        failure inside the block.
        """
        conn = self.pool.get_connection()
        conn.in_transaction = True

        try:
            yield conn
            if conn.in_transaction:
                conn.commit()
        except Exception as e:
            if conn.in_transaction:
                try:
                    conn.rollback()
                except TransactionError as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}")
            raise TransactionError(
                f"Transaction failed: {e}",
                component="DatabaseManager"
            ) from e
        finally:
            conn.close()

    @contextmanager
    def connection(self):
        """
        Context manager for simple read operations.
        """
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """Close the connection pool."""
        self.pool.close_all()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
