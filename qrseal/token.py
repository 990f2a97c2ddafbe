"""
QRSeal token wire format.

A token is a signed bundle::

    {"v": 1, "alg": "ES256", "kid": "...", "payload": {...}, "sig": "<b64url>", "exp": 1767225600}

serialized as::

    "qs1." + base64url(zlib(canonical_json(bundle)))

so it fits in a QR code or a URL query parameter. There is exactly one
wire format per version prefix; anything else is rejected as malformed.

The signature covers the canonical encoding of ``alg``, ``kid``,
``payload`` and ``exp``, so neither the payload nor the expiry can be
altered without invalidating it.
"""

import json
import zlib
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

from .canonicalization import canonicalize
from .errors import MalformedToken, PayloadError
from .keys import SUPPORTED_ALGS
from .payload import ProductPayload
from .util import b64url_decode, b64url_encode

WIRE_PREFIX = "qs1."
WIRE_VERSION = 1

MAX_TOKEN_LENGTH = 8192
MAX_BUNDLE_BYTES = 64 * 1024

_BUNDLE_FIELDS = {"v", "alg", "kid", "payload", "sig", "exp"}


def signing_input(alg: str, kid: str, payload: ProductPayload, expires_at: Optional[int]) -> bytes:
    """Canonical bytes that the signature is computed over."""
    body: Dict[str, Any] = {"alg": alg, "kid": kid, "payload": payload.to_dict()}
    if expires_at is not None:
        body["exp"] = expires_at
    return canonicalize(body)


@dataclass(frozen=True)
class Token:
    """Signed product-identity token. Immutable once issued."""
    payload: ProductPayload
    signature: bytes
    alg: str
    kid: str
    expires_at: Optional[int] = None

    @property
    def product_id(self) -> str:
        return self.payload.id

    @property
    def issued_at(self) -> Optional[int]:
        return self.payload.issued_at

    def signing_input(self) -> bytes:
        return signing_input(self.alg, self.kid, self.payload, self.expires_at)

    def to_bundle(self) -> Dict[str, Any]:
        bundle: Dict[str, Any] = {
            "v": WIRE_VERSION,
            "alg": self.alg,
            "kid": self.kid,
            "payload": self.payload.to_dict(),
            "sig": b64url_encode(self.signature),
        }
        if self.expires_at is not None:
            bundle["exp"] = self.expires_at
        return bundle

    def encode(self) -> str:
        return encode_token(self)

    @classmethod
    def decode(cls, token: str) -> 'Token':
        return decode_token(token)


def encode_token(token: Token) -> str:
    """Serialize a token to its opaque string form."""
    raw = canonicalize(token.to_bundle())
    return WIRE_PREFIX + b64url_encode(zlib.compress(raw, 9))


def _inflate(data: bytes) -> bytes:
    d = zlib.decompressobj()
    out = d.decompress(data, MAX_BUNDLE_BYTES)
    if d.unconsumed_tail:
        raise MalformedToken("token bundle too large")
    if not d.eof:
        raise MalformedToken("truncated token bundle")
    if d.unused_data:
        raise MalformedToken("trailing data after token bundle")
    return out


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name}")


def decode_token(token: str) -> Token:
    """
    Parse an opaque token string into a Token.

    Only structure is checked here; signature and expiry are the verifier's
    job.

    Raises:
        MalformedToken: If the string is not a well-formed token bundle
    """
    if not isinstance(token, str):
        raise MalformedToken("token must be a string")
    token = token.strip()
    if len(token) > MAX_TOKEN_LENGTH:
        raise MalformedToken("token too long")
    if not token.startswith(WIRE_PREFIX):
        raise MalformedToken("unsupported token format")

    try:
        compressed = b64url_decode(token[len(WIRE_PREFIX):])
        raw = _inflate(compressed)
        bundle = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except MalformedToken:
        raise
    except (ValueError, zlib.error) as e:
        raise MalformedToken(f"undecodable token: {e}") from e

    if not isinstance(bundle, dict):
        raise MalformedToken("token bundle must be an object")

    raw_payload = bundle.get("payload")
    claimed_id = raw_payload.get("id") if isinstance(raw_payload, dict) else None
    claimed_id = claimed_id if isinstance(claimed_id, str) else None

    def fail(message: str) -> MalformedToken:
        return MalformedToken(message, product_id=claimed_id)

    unknown = set(bundle) - _BUNDLE_FIELDS
    if unknown:
        raise fail(f"unknown bundle field: {sorted(unknown)[0]}")
    version = bundle.get("v")
    if isinstance(version, bool) or version != WIRE_VERSION:
        raise fail(f"unsupported token version: {version!r}")
    alg = bundle.get("alg")
    if alg not in SUPPORTED_ALGS:
        raise fail(f"unsupported algorithm: {alg!r}")
    kid = bundle.get("kid")
    if not isinstance(kid, str) or not kid:
        raise fail("missing kid")
    sig = bundle.get("sig")
    if not isinstance(sig, str) or not sig:
        raise fail("missing signature")
    try:
        signature = b64url_decode(sig)
    except ValueError as e:
        raise fail("signature is not base64url") from e
    expires_at = bundle.get("exp")
    if expires_at is not None and (isinstance(expires_at, bool) or not isinstance(expires_at, int)):
        raise fail("exp must be an integer timestamp")

    if not isinstance(raw_payload, dict):
        raise fail("missing payload")
    try:
        payload = ProductPayload.from_dict(raw_payload)
    except PayloadError as e:
        raise fail(f"invalid payload: {e}") from e
    if payload.issued_at is None:
        raise fail("payload is missing issuedAt")
    if payload.to_dict() != raw_payload:
        raise fail("payload is not in canonical form")

    return Token(
        payload=payload,
        signature=signature,
        alg=alg,
        kid=kid,
        expires_at=expires_at,
    )


def verification_url(token: str, base_url: str) -> str:
    """Embed an opaque token in a verification URL (``?p=<token>``)."""
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}p={quote(token, safe='')}"
