"""
QRSeal error taxonomy.

Every error carries a stable ``code`` that is safe to return to callers.
Verification failures are reported as ``valid: false`` with that code,
never as a raw exception.
"""

from typing import Optional


class QRSealError(Exception):
    """Base class for all QRSeal errors."""
    code = "error"

    def __init__(self, message: str = ""):
        self.message = message or self.code
        super().__init__(self.message)


class EncodingError(QRSealError, ValueError):
    """Raised when a value cannot be canonically encoded."""
    code = "encoding_error"


class SigningError(QRSealError):
    """Raised when a token cannot be issued (bad key or bad payload)."""
    code = "signing_error"


class PayloadError(SigningError):
    """Raised when a payload field fails validation."""
    code = "invalid_payload"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class KeyLoadError(QRSealError):
    """Raised when key material cannot be loaded or is unsupported."""
    code = "key_error"


# ============================================================
# Verification failures
# ============================================================

class VerificationError(QRSealError):
    """
    Base class for terminal verification failures.

    ``product_id`` is the id claimed by the token, when the bundle could be
    decoded far enough to read it. It is unauthenticated unless the failure
    happened after the signature check.
    """
    code = "verification_failed"

    def __init__(self, message: str = "", product_id: Optional[str] = None):
        self.product_id = product_id
        super().__init__(message)


class MalformedToken(VerificationError):
    code = "malformed"


class Expired(VerificationError):
    code = "expired"

    def __init__(self, message: str = "", product_id: Optional[str] = None,
                 expires_at: Optional[int] = None):
        self.expires_at = expires_at
        super().__init__(message, product_id)


class InvalidSignature(VerificationError):
    code = "invalid_signature"


class Deactivated(VerificationError):
    code = "deactivated"


# ============================================================
# Non-fatal
# ============================================================

class LedgerWriteFailure(QRSealError):
    """Scan ledger write failed. Logged only; never changes a verification outcome."""
    code = "ledger_write_failure"
