"""
Scan ledger: append-only record of verification attempts.

The ledger is the source of truth for scan counts. Counts are always
derived by querying recorded events, never kept in a mutable counter, so
concurrent writers cannot lose updates.
"""

import logging
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import LedgerWriteFailure
from .storage import Database

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)


class ScanOutcome(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"


@dataclass
class ScanMetadata:
    """
    Opaque caller metadata attached to a scan.

    Used for aggregate statistics only, never for authorization.
    """
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class ScanEvent:
    event_id: str
    product_id: str
    timestamp: float
    outcome: ScanOutcome
    risk_level: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "productId": self.product_id,
            "timestamp": self.timestamp,
            "outcome": self.outcome.value,
            "riskLevel": self.risk_level,
            "clientIp": self.client_ip,
            "userAgent": self.user_agent,
            "error": self.error,
        }


def _risk_value(risk_level) -> Optional[str]:
    if risk_level is None:
        return None
    return getattr(risk_level, "value", risk_level)


def _day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


class ScanLedger(ABC):
    """Append-only store of scan events."""

    @abstractmethod
    def record(
        self,
        product_id: str,
        outcome: ScanOutcome,
        metadata: Optional[ScanMetadata] = None,
        risk_level: Optional[str] = None,
        error: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> str:
        """
        Append a scan event.

        Returns:
            The new event id

        Raises:
            LedgerWriteFailure: If the event could not be stored
        """

    @abstractmethod
    def count_since(
        self,
        product_id: str,
        window: timedelta,
        outcome: Optional[ScanOutcome] = ScanOutcome.VALID,
        now: Optional[float] = None,
    ) -> int:
        """Count events for ``product_id`` within the trailing ``window``."""

    @abstractmethod
    def count_total(self, product_id: str, outcome: Optional[ScanOutcome] = ScanOutcome.VALID) -> int:
        """Count all events for ``product_id``."""

    @abstractmethod
    def list_events(
        self,
        product_id: Optional[str] = None,
        outcome: Optional[ScanOutcome] = None,
        risk_level: Optional[str] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ScanEvent]:
        """Most recent events first."""

    @abstractmethod
    def counts_by_product(self, limit: int = 20,
                          outcome: Optional[ScanOutcome] = ScanOutcome.VALID) -> List[Tuple[str, int]]:
        """Products with the most events, descending."""

    @abstractmethod
    def daily_counts(self, days: int = 30, now: Optional[float] = None) -> List[Dict[str, Any]]:
        """Per-UTC-day totals for the trailing ``days``, oldest first."""

    @abstractmethod
    def stats(self, now: Optional[float] = None) -> Dict[str, int]:
        """Aggregate counters for dashboards."""


# ============================================================
# SQLite
# ============================================================

class SqliteScanLedger(ScanLedger):
    """Ledger backed by the ``scan_events`` table. INSERT-only."""

    def __init__(self, db: Database):
        self.db = db

    def record(self, product_id, outcome, metadata=None, risk_level=None, error=None, timestamp=None) -> str:
        metadata = metadata or ScanMetadata()
        event_id = uuid.uuid4().hex
        ts = time.time() if timestamp is None else timestamp
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO scan_events(event_id, product_id, scanned_at, outcome, risk_level, "
                    "client_ip, user_agent, error) VALUES(?,?,?,?,?,?,?,?)",
                    (event_id, product_id, ts, ScanOutcome(outcome).value, _risk_value(risk_level),
                     metadata.client_ip, metadata.user_agent, error)
                )
        except sqlite3.Error as e:
            raise LedgerWriteFailure(f"could not record scan for {product_id}: {e}") from e
        return event_id

    def _outcome_clause(self, outcome: Optional[ScanOutcome]) -> Tuple[str, tuple]:
        if outcome is None:
            return "", ()
        return " AND outcome = ?", (ScanOutcome(outcome).value,)

    def count_since(self, product_id, window, outcome=ScanOutcome.VALID, now=None) -> int:
        now = time.time() if now is None else now
        clause, params = self._outcome_clause(outcome)
        row = self.db.connection().execute(
            "SELECT COUNT(*) AS cnt FROM scan_events WHERE product_id = ? AND scanned_at > ?" + clause,
            (product_id, now - window.total_seconds()) + params
        ).fetchone()
        return row["cnt"]

    def count_total(self, product_id, outcome=ScanOutcome.VALID) -> int:
        clause, params = self._outcome_clause(outcome)
        row = self.db.connection().execute(
            "SELECT COUNT(*) AS cnt FROM scan_events WHERE product_id = ?" + clause,
            (product_id,) + params
        ).fetchone()
        return row["cnt"]

    def list_events(self, product_id=None, outcome=None, risk_level=None, since=None, until=None,
                    limit=100, offset=0) -> List[ScanEvent]:
        query = "SELECT * FROM scan_events WHERE 1=1"
        params: list = []
        if product_id is not None:
            query += " AND product_id = ?"
            params.append(product_id)
        if outcome is not None:
            query += " AND outcome = ?"
            params.append(ScanOutcome(outcome).value)
        if risk_level is not None:
            query += " AND risk_level = ?"
            params.append(_risk_value(risk_level))
        if since is not None:
            query += " AND scanned_at >= ?"
            params.append(since)
        if until is not None:
            query += " AND scanned_at <= ?"
            params.append(until)
        query += " ORDER BY scanned_at DESC, seq DESC LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])
        rows = self.db.connection().execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def counts_by_product(self, limit=20, outcome=ScanOutcome.VALID) -> List[Tuple[str, int]]:
        clause, params = self._outcome_clause(outcome)
        rows = self.db.connection().execute(
            "SELECT product_id, COUNT(*) AS cnt FROM scan_events WHERE 1=1" + clause +
            " GROUP BY product_id ORDER BY cnt DESC, product_id ASC LIMIT ?",
            params + (int(limit),)
        ).fetchall()
        return [(r["product_id"], r["cnt"]) for r in rows]

    def daily_counts(self, days=30, now=None) -> List[Dict[str, Any]]:
        now = time.time() if now is None else now
        rows = self.db.connection().execute(
            "SELECT date(scanned_at, 'unixepoch') AS day, COUNT(*) AS total, "
            "SUM(CASE WHEN outcome = 'valid' THEN 1 ELSE 0 END) AS valid, "
            "SUM(CASE WHEN risk_level = 'high' THEN 1 ELSE 0 END) AS high_risk "
            "FROM scan_events WHERE scanned_at > ? GROUP BY day ORDER BY day ASC",
            (now - days * DAY.total_seconds(),)
        ).fetchall()
        return [
            {"date": r["day"], "total": r["total"], "valid": r["valid"], "highRisk": r["high_risk"]}
            for r in rows
        ]

    def stats(self, now=None) -> Dict[str, int]:
        now = time.time() if now is None else now
        row = self.db.connection().execute(
            "SELECT COUNT(*) AS total, "
            "COALESCE(SUM(CASE WHEN outcome = 'valid' THEN 1 ELSE 0 END), 0) AS valid, "
            "COALESCE(SUM(CASE WHEN scanned_at > ? THEN 1 ELSE 0 END), 0) AS last_24h, "
            "COALESCE(SUM(CASE WHEN risk_level = 'high' THEN 1 ELSE 0 END), 0) AS high_risk "
            "FROM scan_events",
            (now - DAY.total_seconds(),)
        ).fetchone()
        return {
            "total": row["total"],
            "valid": row["valid"],
            "invalid": row["total"] - row["valid"],
            "last24h": row["last_24h"],
            "highRisk": row["high_risk"],
        }

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ScanEvent:
        return ScanEvent(
            event_id=row["event_id"],
            product_id=row["product_id"],
            timestamp=row["scanned_at"],
            outcome=ScanOutcome(row["outcome"]),
            risk_level=row["risk_level"],
            client_ip=row["client_ip"],
            user_agent=row["user_agent"],
            error=row["error"],
        )


# ============================================================
# In-memory
# ============================================================

class InMemoryScanLedger(ScanLedger):
    """
    Process-local ledger for tests and single-process tools.

    Events live in a lock-guarded append-only list; counts are derived from
    it on every query.
    """

    def __init__(self):
        self._events: List[ScanEvent] = []
        self._lock = threading.Lock()

    def _snapshot(self) -> List[ScanEvent]:
        with self._lock:
            return list(self._events)

    def record(self, product_id, outcome, metadata=None, risk_level=None, error=None, timestamp=None) -> str:
        metadata = metadata or ScanMetadata()
        event = ScanEvent(
            event_id=uuid.uuid4().hex,
            product_id=product_id,
            timestamp=time.time() if timestamp is None else timestamp,
            outcome=ScanOutcome(outcome),
            risk_level=_risk_value(risk_level),
            client_ip=metadata.client_ip,
            user_agent=metadata.user_agent,
            error=error,
        )
        with self._lock:
            self._events.append(event)
        return event.event_id

    @staticmethod
    def _matches(event: ScanEvent, product_id: Optional[str], outcome: Optional[ScanOutcome]) -> bool:
        if product_id is not None and event.product_id != product_id:
            return False
        return outcome is None or event.outcome == ScanOutcome(outcome)

    def count_since(self, product_id, window, outcome=ScanOutcome.VALID, now=None) -> int:
        cutoff = (time.time() if now is None else now) - window.total_seconds()
        return sum(
            1 for e in self._snapshot()
            if self._matches(e, product_id, outcome) and e.timestamp > cutoff
        )

    def count_total(self, product_id, outcome=ScanOutcome.VALID) -> int:
        return sum(1 for e in self._snapshot() if self._matches(e, product_id, outcome))

    def list_events(self, product_id=None, outcome=None, risk_level=None, since=None, until=None,
                    limit=100, offset=0) -> List[ScanEvent]:
        risk = _risk_value(risk_level)
        selected = [
            e for e in self._snapshot()
            if self._matches(e, product_id, outcome)
            and (risk is None or e.risk_level == risk)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]
        # newest first; equal timestamps fall back to insertion order
        selected = sorted(enumerate(selected), key=lambda p: (p[1].timestamp, p[0]), reverse=True)
        return [e for _, e in selected[offset:offset + limit]]

    def counts_by_product(self, limit=20, outcome=ScanOutcome.VALID) -> List[Tuple[str, int]]:
        counts = Counter(e.product_id for e in self._snapshot() if self._matches(e, None, outcome))
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]

    def daily_counts(self, days=30, now=None) -> List[Dict[str, Any]]:
        cutoff = (time.time() if now is None else now) - days * DAY.total_seconds()
        buckets: Dict[str, Dict[str, Any]] = {}
        for e in self._snapshot():
            if e.timestamp <= cutoff:
                continue
            day = _day(e.timestamp)
            b = buckets.setdefault(day, {"date": day, "total": 0, "valid": 0, "highRisk": 0})
            b["total"] += 1
            b["valid"] += e.outcome == ScanOutcome.VALID
            b["highRisk"] += e.risk_level == "high"
        return [buckets[d] for d in sorted(buckets)]

    def stats(self, now=None) -> Dict[str, int]:
        cutoff = (time.time() if now is None else now) - DAY.total_seconds()
        events = self._snapshot()
        valid = sum(1 for e in events if e.outcome == ScanOutcome.VALID)
        return {
            "total": len(events),
            "valid": valid,
            "invalid": len(events) - valid,
            "last24h": sum(1 for e in events if e.timestamp > cutoff),
            "highRisk": sum(1 for e in events if e.risk_level == "high"),
        }
