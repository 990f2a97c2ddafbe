"""
QRSeal Verification

Checks a token in a fixed order, stopping at the first failure:

1. Structural decode            -> MalformedToken
2. Expiry                       -> Expired
3. Signature over the canonical
   signing input                -> InvalidSignature
4. Product registry status      -> Deactivated (business override, not a
                                   cryptographic failure)
5. Record the scan and score risk

Steps 1-3 are pure (``verify_token``). Steps 4-5 belong to ``Verifier``,
which also records failed scans. Ledger problems never change the outcome:
verification succeeds and logging degrades. Registry problems fail closed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .errors import (
    Deactivated,
    EncodingError,
    Expired,
    InvalidSignature,
    MalformedToken,
    VerificationError,
)
from .keys import VerifyKey
from .ledger import ScanLedger, ScanMetadata, ScanOutcome
from .payload import ProductPayload
from .registry import ProductRegistry
from .risk import RiskLevel, RiskScorer
from .token import Token, decode_token
from .util import now_epoch

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "unknown"


class RegistryUnavailable(VerificationError):
    code = "registry_unavailable"


@dataclass
class VerificationResult:
    """Outcome of verifying one scanned token."""
    valid: bool
    payload: Optional[ProductPayload] = None
    reason: Optional[str] = None
    risk: Optional[RiskLevel] = None
    scan_count: Optional[int] = None
    expires_at: Optional[int] = None
    kid: Optional[str] = None

    @classmethod
    def success(cls, token: Token, risk: Optional[RiskLevel] = None,
                scan_count: Optional[int] = None) -> 'VerificationResult':
        return cls(valid=True, payload=token.payload, risk=risk, scan_count=scan_count,
                   expires_at=token.expires_at, kid=token.kid)

    @classmethod
    def failure(cls, reason: str, payload: Optional[ProductPayload] = None,
                risk: Optional[RiskLevel] = None) -> 'VerificationResult':
        return cls(valid=False, reason=reason, payload=payload, risk=risk)

    def to_dict(self) -> Dict[str, Any]:
        """Response form; absent fields are omitted."""
        out: Dict[str, Any] = {"valid": self.valid}
        if self.payload is not None:
            out["payload"] = self.payload.to_dict()
        if self.reason is not None:
            out["reason"] = self.reason
        if self.risk is not None:
            out["risk"] = self.risk.value
        if self.scan_count is not None:
            out["scanCount"] = self.scan_count
        if self.expires_at is not None:
            out["expiresAt"] = self.expires_at
        return out


def verify_token(token: Union[str, Token], verify_key: VerifyKey, now: Optional[int] = None) -> Token:
    """
    Cryptographically verify a token and return it decoded.

    Args:
        token: Opaque token string (or an already decoded Token)
        verify_key: Issuer public key
        now: Verification time override (epoch seconds)

    Returns:
        The verified Token; its payload is authentic

    Raises:
        MalformedToken: Bundle cannot be decoded
        Expired: ``exp`` has passed
        InvalidSignature: Tampered token or wrong key
    """
    decoded = token if isinstance(token, Token) else decode_token(token)
    product_id = decoded.payload.id if isinstance(decoded.payload, ProductPayload) else None
    now = now_epoch() if now is None else now

    if decoded.expires_at is not None and now > decoded.expires_at:
        raise Expired("token has expired", product_id=product_id, expires_at=decoded.expires_at)

    if decoded.alg != verify_key.alg:
        raise InvalidSignature("token algorithm does not match verification key", product_id=product_id)

    try:
        data = decoded.signing_input()
    except EncodingError as e:
        raise MalformedToken(f"payload cannot be encoded: {e}", product_id=product_id) from e

    if not verify_key.verify(decoded.signature, data):
        raise InvalidSignature("signature does not match", product_id=product_id)
    return decoded


class Verifier:
    """
    Full scan verification: signature, registry override, ledger and risk.

    Without a registry or ledger it reduces to ``verify_token`` wrapped in a
    VerificationResult. ``on_ledger_failure(product_id, error)`` is called
    when a scan event cannot be written.
    """

    def __init__(
        self,
        verify_key: VerifyKey,
        registry: Optional[ProductRegistry] = None,
        ledger: Optional[ScanLedger] = None,
        scorer: Optional[RiskScorer] = None,
        on_ledger_failure: Optional[Callable[[str, Exception], None]] = None,
    ):
        self.verify_key = verify_key
        self.registry = registry
        self.ledger = ledger
        self.scorer = scorer if scorer is not None or ledger is None else RiskScorer(ledger)
        self.on_ledger_failure = on_ledger_failure

    def verify(
        self,
        token: Union[str, Token],
        scan: Optional[ScanMetadata] = None,
        now: Optional[int] = None,
    ) -> VerificationResult:
        scan = scan or ScanMetadata()
        decoded: Optional[Token] = None
        try:
            decoded = verify_token(token, self.verify_key, now=now)
            self._check_registry(decoded.payload.id)
        except Deactivated as e:
            logger.warning("Rejected scan of deactivated product %s", e.product_id)
            self._record(e.product_id, ScanOutcome.DEACTIVATED, scan, RiskLevel.HIGH, e.code, now)
            return VerificationResult.failure(e.code, payload=decoded.payload, risk=RiskLevel.HIGH)
        except VerificationError as e:
            logger.warning("Rejected scan (%s): %s", e.code, e.message)
            self._record(e.product_id or UNKNOWN_PRODUCT, ScanOutcome.INVALID, scan, RiskLevel.HIGH, e.code, now)
            return VerificationResult.failure(e.code)

        product_id = decoded.payload.id
        risk = self._score(product_id, now)
        self._record(product_id, ScanOutcome.VALID, scan, risk, None, now)
        scan_count = self._scan_count(product_id)
        logger.info("Verified product %s (scan #%s, risk: %s)", product_id, scan_count,
                    risk.value if risk else None)
        return VerificationResult.success(decoded, risk=risk, scan_count=scan_count)

    def _check_registry(self, product_id: str) -> None:
        if self.registry is None:
            return
        try:
            active = self.registry.is_active(product_id)
        except Exception as e:
            logger.exception("Product registry lookup failed for %s", product_id)
            raise RegistryUnavailable("product status unavailable", product_id=product_id) from e
        if not active:
            raise Deactivated("product has been deactivated", product_id=product_id)

    def _score(self, product_id: str, now: Optional[int]) -> Optional[RiskLevel]:
        if self.scorer is None:
            return None
        try:
            # the scan being verified is not in the ledger yet
            return self.scorer.score(product_id, pending=1, now=now)
        except Exception:
            logger.exception("Risk scoring failed for %s", product_id)
            return None

    def _record(self, product_id: str, outcome: ScanOutcome, scan: ScanMetadata,
                risk: Optional[RiskLevel], error: Optional[str], now: Optional[int]) -> Optional[str]:
        if self.ledger is None:
            return None
        try:
            return self.ledger.record(product_id, outcome, scan, risk_level=risk, error=error, timestamp=now)
        except Exception as e:
            logger.exception("Ledger write failed for %s (%s); verification outcome unchanged",
                             product_id, outcome.value)
            if self.on_ledger_failure is not None:
                self.on_ledger_failure(product_id, e)
            return None

    def _scan_count(self, product_id: str) -> Optional[int]:
        if self.ledger is None:
            return None
        try:
            return self.ledger.count_total(product_id, ScanOutcome.VALID)
        except Exception:
            logger.exception("Scan count lookup failed for %s", product_id)
            return None
