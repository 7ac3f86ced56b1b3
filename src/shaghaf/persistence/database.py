"""
Database Connection Layer

SQLite storage for clients, products, invoices and session snapshots, with
schema bootstrap on first use.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Generator, Any, Dict, List
from datetime import datetime, timezone
import threading
import structlog

logger = structlog.get_logger()

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Clients (members and walk-ins)
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    phone TEXT,
    email TEXT,
    membership_type TEXT NOT NULL DEFAULT 'daily',
    membership_start TEXT,
    membership_end TEXT,
    created_at TEXT NOT NULL
);

-- Product catalog and stock
CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT,
    price INTEGER NOT NULL,
    stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK (stock_quantity >= 0),
    min_stock_level INTEGER NOT NULL DEFAULT 0,
    unit TEXT NOT NULL DEFAULT 'piece',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Invoices (line items and payment postings embedded as JSON)
CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    client_id TEXT,
    session_id TEXT,
    items TEXT NOT NULL,  -- JSON array
    total_amount INTEGER NOT NULL,
    payment_postings TEXT NOT NULL,  -- JSON array
    status TEXT NOT NULL DEFAULT 'PENDING',
    is_partial INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Session ledger snapshots
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    client_id TEXT,
    invoice_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    started_at TEXT NOT NULL,
    ended_at TEXT,
    ledger TEXT NOT NULL,  -- JSON object
    updated_at TEXT NOT NULL
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_clients_phone ON clients(phone);
CREATE INDEX IF NOT EXISTS idx_products_active ON products(is_active);
CREATE INDEX IF NOT EXISTS idx_invoices_client ON invoices(client_id);
CREATE INDEX IF NOT EXISTS idx_invoices_session ON invoices(session_id);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
"""


class Database:
    """
    Database connection manager.

    Usage:
        db = Database()  # Uses DATABASE_URL env or defaults to sqlite:///shaghaf.db
        with db.connection() as conn:
            conn.execute("SELECT * FROM invoices")

    File databases get one connection per thread. `sqlite:///:memory:` gets a
    single shared connection, since every new connection would otherwise
    open a fresh, empty database.
    """

    _instance: Optional["Database"] = None
    _lock = threading.Lock()

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.environ.get(
            "DATABASE_URL",
            "sqlite:///shaghaf.db"
        )
        if not self.database_url.startswith("sqlite"):
            raise ValueError(f"Unsupported database URL: {self.database_url}")
        self._local = threading.local()
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.RLock()
        self._initialized = False

    @classmethod
    def get_instance(cls, database_url: Optional[str] = None) -> "Database":
        """Get singleton database instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(database_url)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = None

    @property
    def is_memory(self) -> bool:
        return self._get_sqlite_path() == ":memory:"

    def _get_sqlite_path(self) -> str:
        """Extract SQLite file path from URL."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url[10:]
        return "shaghaf.db"

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._get_sqlite_path(),
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        if not self.is_memory:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        if self.is_memory:
            if self._shared_conn is None:
                self._shared_conn = self._open()
            return self._shared_conn
        if getattr(self._local, "conn", None) is None:
            self._local.conn = self._open()
        return self._local.conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a connection; commit on success, roll back on error."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            with self.connection() as conn:
                conn.executescript(SCHEMA_SQL)
                now = datetime.now(timezone.utc).isoformat()
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now)
                )

            self._initialized = True
            logger.info("database_initialized", url=self.database_url[:40], schema_version=SCHEMA_VERSION)

    def execute(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a query and return results as list of dicts."""
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            if cursor.description:
                return [dict(row) for row in cursor.fetchall()]
            return []

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Execute a write and return the number of affected rows."""
        with self.connection() as conn:
            return conn.execute(query, params).rowcount

    def execute_many(self, query: str, params_list: List[tuple]) -> int:
        """Execute a query with multiple parameter sets."""
        with self.connection() as conn:
            return conn.executemany(query, params_list).rowcount

    def close(self) -> None:
        """Close database connections."""
        if getattr(self._local, "conn", None) is not None:
            self._local.conn.close()
            self._local.conn = None
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None


def get_database(database_url: Optional[str] = None) -> Database:
    """Get the database singleton instance."""
    db = Database.get_instance(database_url)
    db.initialize()
    return db
