"""
Product registry: active/deactivated status per product id.

Deactivation is the only way to revoke an otherwise valid token. It is
immediate and global. Rows are never hard-deleted.
"""

import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .storage import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductRecord:
    product_id: str
    name: Optional[str] = None
    batch: Optional[str] = None
    is_active: bool = True
    created_at: float = 0.0
    updated_at: float = 0.0
    last_token: Optional[str] = None
    last_issued_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "name": self.name,
            "batch": self.batch,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastToken": self.last_token,
            "lastIssuedAt": self.last_issued_at,
        }


class ProductRegistry(ABC):

    @abstractmethod
    def upsert(
        self,
        product_id: str,
        name: Optional[str] = None,
        batch: Optional[str] = None,
        last_token: Optional[str] = None,
        last_issued_at: Optional[int] = None,
    ) -> ProductRecord:
        """Create the entry or refresh its details. Active status is preserved."""

    @abstractmethod
    def set_active(self, product_id: str, active: bool) -> Optional[ProductRecord]:
        """Toggle status. Returns None for unknown ids."""

    @abstractmethod
    def get(self, product_id: str) -> Optional[ProductRecord]:
        """Return the entry or None."""

    @abstractmethod
    def list(self, search: Optional[str] = None, active: Optional[bool] = None,
             limit: int = 50, offset: int = 0) -> List[ProductRecord]:
        """Newest first."""

    @abstractmethod
    def count(self, active: Optional[bool] = None) -> int:
        """Number of entries, optionally filtered by status."""

    def is_active(self, product_id: str) -> bool:
        """
        Unknown ids count as active so that freshly issued, not yet
        persisted tokens still verify.
        """
        record = self.get(product_id)
        return True if record is None else record.is_active


# ============================================================
# SQLite
# ============================================================

class SqliteProductRegistry(ProductRegistry):

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, product_id, name=None, batch=None, last_token=None, last_issued_at=None) -> ProductRecord:
        now = time.time()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO products(product_id, name, batch, is_active, created_at, updated_at,
                                     last_token, last_issued_at)
                VALUES(?,?,?,1,?,?,?,?)
                ON CONFLICT(product_id) DO UPDATE SET
                    name = COALESCE(excluded.name, products.name),
                    batch = COALESCE(excluded.batch, products.batch),
                    last_token = COALESCE(excluded.last_token, products.last_token),
                    last_issued_at = COALESCE(excluded.last_issued_at, products.last_issued_at),
                    updated_at = excluded.updated_at
                """,
                (product_id, name, batch, now, now, last_token, last_issued_at)
            )
        return self.get(product_id)

    def set_active(self, product_id, active) -> Optional[ProductRecord]:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE products SET is_active = ?, updated_at = ? WHERE product_id = ?",
                (1 if active else 0, time.time(), product_id)
            )
            if cur.rowcount == 0:
                return None
        logger.info("Product %s %s", product_id, "activated" if active else "deactivated")
        return self.get(product_id)

    def get(self, product_id) -> Optional[ProductRecord]:
        row = self.db.connection().execute(
            "SELECT * FROM products WHERE product_id = ?", (product_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def list(self, search=None, active=None, limit=50, offset=0) -> List[ProductRecord]:
        query = "SELECT * FROM products WHERE 1=1"
        params: list = []
        if search:
            query += " AND (product_id LIKE ? OR name LIKE ?)"
            params.extend([f"%{search}%", f"%{search}%"])
        if active is not None:
            query += " AND is_active = ?"
            params.append(1 if active else 0)
        query += " ORDER BY created_at DESC, product_id ASC LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])
        return [self._row_to_record(r) for r in self.db.connection().execute(query, params).fetchall()]

    def count(self, active=None) -> int:
        if active is None:
            row = self.db.connection().execute("SELECT COUNT(*) AS cnt FROM products").fetchone()
        else:
            row = self.db.connection().execute(
                "SELECT COUNT(*) AS cnt FROM products WHERE is_active = ?", (1 if active else 0,)
            ).fetchone()
        return row["cnt"]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ProductRecord:
        return ProductRecord(
            product_id=row["product_id"],
            name=row["name"],
            batch=row["batch"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_token=row["last_token"],
            last_issued_at=row["last_issued_at"],
        )


# ============================================================
# In-memory
# ============================================================

class InMemoryProductRegistry(ProductRegistry):
    """Process-local registry for tests and single-process tools."""

    def __init__(self):
        self._records: Dict[str, ProductRecord] = {}
        self._lock = threading.RLock()

    def upsert(self, product_id, name=None, batch=None, last_token=None, last_issued_at=None) -> ProductRecord:
        now = time.time()
        with self._lock:
            existing = self._records.get(product_id)
            if existing is None:
                record = ProductRecord(product_id, name, batch, True, now, now, last_token, last_issued_at)
            else:
                record = replace(
                    existing,
                    name=name if name is not None else existing.name,
                    batch=batch if batch is not None else existing.batch,
                    last_token=last_token if last_token is not None else existing.last_token,
                    last_issued_at=last_issued_at if last_issued_at is not None else existing.last_issued_at,
                    updated_at=now,
                )
            self._records[product_id] = record
            return record

    def set_active(self, product_id, active) -> Optional[ProductRecord]:
        with self._lock:
            existing = self._records.get(product_id)
            if existing is None:
                return None
            record = replace(existing, is_active=bool(active), updated_at=time.time())
            self._records[product_id] = record
        logger.info("Product %s %s", product_id, "activated" if active else "deactivated")
        return record

    def get(self, product_id) -> Optional[ProductRecord]:
        with self._lock:
            return self._records.get(product_id)

    def list(self, search=None, active=None, limit=50, offset=0) -> List[ProductRecord]:
        with self._lock:
            records = list(self._records.values())
        if search:
            needle = search.lower()
            records = [r for r in records
                       if needle in r.product_id.lower() or needle in (r.name or "").lower()]
        if active is not None:
            records = [r for r in records if r.is_active == active]
        records.sort(key=lambda r: r.product_id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset:offset + limit]

    def count(self, active=None) -> int:
        with self._lock:
            if active is None:
                return len(self._records)
            return sum(1 for r in self._records.values() if r.is_active == active)
