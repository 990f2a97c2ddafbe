"""
SQLite storage for QRSeal.

Backs the scan ledger and the product registry. Each thread gets its own
connection; WAL mode and a busy timeout let concurrent writers append
without losing rows.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Union

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 30.0

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS products (
        product_id TEXT PRIMARY KEY,
        name TEXT,
        batch TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        last_token TEXT,
        last_issued_at INTEGER
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_products_active
    ON products(is_active);""",
    """
    CREATE TABLE IF NOT EXISTS scan_events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        product_id TEXT NOT NULL,
        scanned_at REAL NOT NULL,
        outcome TEXT NOT NULL,
        risk_level TEXT,
        client_ip TEXT,
        user_agent TEXT,
        error TEXT
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_scan_events_product_time
    ON scan_events(product_id, scanned_at);""",
    """
    CREATE INDEX IF NOT EXISTS idx_scan_events_risk
    ON scan_events(risk_level);""",
    """
    CREATE INDEX IF NOT EXISTS idx_scan_events_time
    ON scan_events(scanned_at);""",
)


class Database:
    """
    Thread-local SQLite connection pool for one database file.

    Connections are reused within the same thread.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """Create tables and indexes. Safe to call multiple times."""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info("Database schema ready at %s", self.path)

    def ping(self) -> bool:
        try:
            self.connection().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            logger.exception("Database ping failed")
            return False

    def close(self) -> None:
        """Close every connection opened through this handle."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
