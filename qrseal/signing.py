"""
QRSeal token issuance.

Validates a payload, stamps ``issuedAt`` and an optional expiry, and signs
the canonical signing input with the issuer's private key. Signing has no
side effects; persisting the product is the caller's job.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Union

from .errors import EncodingError, KeyLoadError, SigningError
from .keys import SigningKey
from .payload import ProductPayload, validate_payload
from .token import Token, signing_input
from .util import now_epoch

logger = logging.getLogger(__name__)

Expiry = Union[int, timedelta, None]


def _expiry_seconds(expiry: Expiry) -> Optional[int]:
    if expiry is None:
        return None
    if isinstance(expiry, timedelta):
        seconds = int(expiry.total_seconds())
    elif isinstance(expiry, int) and not isinstance(expiry, bool):
        seconds = expiry
    else:
        raise SigningError(f"expiry must be seconds or timedelta, got {type(expiry).__name__}")
    if seconds <= 0:
        raise SigningError("expiry must be positive")
    return seconds


def sign(
    payload: Union[ProductPayload, Dict[str, Any]],
    signing_key: SigningKey,
    expiry: Expiry = None,
    now: Optional[int] = None,
) -> Token:
    """
    Issue a signed token for a product payload.

    Args:
        payload: ProductPayload or its wire-form dict (``issuedAt`` is overwritten)
        signing_key: Issuer private key
        expiry: Token lifetime in seconds or as timedelta; None for no expiry
        now: Issue time override (epoch seconds)

    Returns:
        The signed Token

    Raises:
        SigningError: If the payload fails validation or the key cannot sign
    """
    if not isinstance(signing_key, SigningKey):
        raise SigningError(f"Unsupported signing key: {type(signing_key).__name__}")

    validated = validate_payload(payload)
    issued_at = now_epoch() if now is None else int(now)
    validated = validated.with_issued_at(issued_at)

    seconds = _expiry_seconds(expiry)
    expires_at = issued_at + seconds if seconds is not None else None

    try:
        data = signing_input(signing_key.alg, signing_key.kid, validated, expires_at)
    except EncodingError as e:
        raise SigningError(f"payload cannot be encoded: {e}") from e

    try:
        signature = signing_key.sign(data)
    except SigningError:
        raise
    except (KeyLoadError, ValueError, TypeError) as e:
        raise SigningError(f"signing failed: {e}") from e

    logger.debug("Signed token for %s (kid=%s, alg=%s)", validated.id, signing_key.kid, signing_key.alg)
    return Token(
        payload=validated,
        signature=signature,
        alg=signing_key.alg,
        kid=signing_key.kid,
        expires_at=expires_at,
    )


class Signer:
    """
    Issuer bound to one signing key and a default token lifetime.

    Stateless apart from configuration; safe to share across threads.
    """

    def __init__(self, signing_key: SigningKey, default_expiry: Expiry = None):
        self.signing_key = signing_key
        self.default_expiry = _expiry_seconds(default_expiry)

    @property
    def kid(self) -> str:
        return self.signing_key.kid

    def issue(
        self,
        payload: Union[ProductPayload, Dict[str, Any]],
        expiry: Expiry = None,
        now: Optional[int] = None,
    ) -> Token:
        """Sign ``payload``; ``expiry`` falls back to the default lifetime."""
        return sign(payload, self.signing_key, expiry if expiry is not None else self.default_expiry, now)
