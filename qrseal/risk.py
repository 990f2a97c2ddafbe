"""
Scan risk scoring.

An unexpectedly high scan rate for one physical unit within a short window
is the strongest observable sign that a signed token has been lifted and
reused across duplicate goods. The scorer counts valid scans in a trailing
window and maps the count onto low / medium / high. It keeps no state of
its own; every call re-reads the ledger.

Per-location analysis (impossible travel and the like) is not attempted.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from .ledger import DAY, ScanLedger, ScanOutcome

DEFAULT_MEDIUM_ABOVE = 3
DEFAULT_HIGH_ABOVE = 10


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify(count: int, medium_above: int = DEFAULT_MEDIUM_ABOVE,
             high_above: int = DEFAULT_HIGH_ABOVE) -> RiskLevel:
    """
    Map a scan count onto a risk level.

    count <= medium_above -> low; <= high_above -> medium; otherwise high.
    """
    if count > high_above:
        return RiskLevel.HIGH
    if count > medium_above:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskScorer:
    """Risk level from the number of valid scans in a trailing window."""

    def __init__(
        self,
        ledger: ScanLedger,
        window: timedelta = DAY,
        medium_above: int = DEFAULT_MEDIUM_ABOVE,
        high_above: int = DEFAULT_HIGH_ABOVE,
    ):
        if medium_above < 0 or high_above < medium_above:
            raise ValueError("risk thresholds must satisfy 0 <= medium_above <= high_above")
        self.ledger = ledger
        self.window = window
        self.medium_above = medium_above
        self.high_above = high_above

    def window_count(self, product_id: str, now: Optional[float] = None) -> int:
        return self.ledger.count_since(product_id, self.window, ScanOutcome.VALID, now=now)

    def score(self, product_id: str, pending: int = 0, now: Optional[float] = None) -> RiskLevel:
        """
        Score ``product_id`` from ledger state at call time.

        Args:
            product_id: Product to score
            pending: Scans not yet visible in the ledger to include in the count
            now: Evaluation time override (epoch seconds)
        """
        return classify(self.window_count(product_id, now) + pending, self.medium_above, self.high_above)
