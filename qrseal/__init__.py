"""
QRSeal: signed product-identity tokens for QR-code authenticity checks.

A manufacturer signs a product payload once; the resulting token is printed
as a QR code on the product. Any scan can be checked offline against the
issuer's public key, while the service records scan history to spot cloned
codes.

Usage:
    from qrseal import (
        generate_signing_key,
        sign,
        Verifier,
        InMemoryProductRegistry,
        InMemoryScanLedger,
    )

    key = generate_signing_key()
    token = sign({"id": "SKU-42", "name": "Widget"}, key).encode()

    verifier = Verifier(
        key.verify_key(),
        registry=InMemoryProductRegistry(),
        ledger=InMemoryScanLedger(),
    )
    result = verifier.verify(token)
    result.valid        # True
    result.risk         # RiskLevel.LOW
    result.scan_count   # 1
"""

__version__ = "1.0.0"

from .canonicalization import canonicalize, canonicalize_str
from .errors import (
    QRSealError,
    EncodingError,
    SigningError,
    PayloadError,
    KeyLoadError,
    VerificationError,
    MalformedToken,
    Expired,
    InvalidSignature,
    Deactivated,
    LedgerWriteFailure,
)
from .keys import (
    ALG_ES256,
    ALG_RS256,
    ALG_EDDSA,
    SUPPORTED_ALGS,
    SigningKey,
    VerifyKey,
    KeyProvider,
    StaticKeyProvider,
    FileKeyProvider,
    EnvKeyProvider,
    AwsKmsKeyProvider,
    generate_signing_key,
    load_signing_key,
    load_verify_key,
    get_key_provider,
)
from .payload import ProductPayload, validate_payload
from .token import Token, encode_token, decode_token, verification_url
from .signing import Signer, sign
from .storage import Database
from .ledger import (
    ScanLedger,
    ScanEvent,
    ScanMetadata,
    ScanOutcome,
    SqliteScanLedger,
    InMemoryScanLedger,
)
from .registry import (
    ProductRecord,
    ProductRegistry,
    SqliteProductRegistry,
    InMemoryProductRegistry,
)
from .risk import RiskLevel, RiskScorer, classify
from .verifier import Verifier, VerificationResult, RegistryUnavailable, verify_token

__all__ = [
    "canonicalize",
    "canonicalize_str",
    "QRSealError",
    "EncodingError",
    "SigningError",
    "PayloadError",
    "KeyLoadError",
    "VerificationError",
    "MalformedToken",
    "Expired",
    "InvalidSignature",
    "Deactivated",
    "LedgerWriteFailure",
    "RegistryUnavailable",
    "ALG_ES256",
    "ALG_RS256",
    "ALG_EDDSA",
    "SUPPORTED_ALGS",
    "SigningKey",
    "VerifyKey",
    "KeyProvider",
    "StaticKeyProvider",
    "FileKeyProvider",
    "EnvKeyProvider",
    "AwsKmsKeyProvider",
    "generate_signing_key",
    "load_signing_key",
    "load_verify_key",
    "get_key_provider",
    "ProductPayload",
    "validate_payload",
    "Token",
    "encode_token",
    "decode_token",
    "verification_url",
    "Signer",
    "sign",
    "Database",
    "ScanLedger",
    "ScanEvent",
    "ScanMetadata",
    "ScanOutcome",
    "SqliteScanLedger",
    "InMemoryScanLedger",
    "ProductRecord",
    "ProductRegistry",
    "SqliteProductRegistry",
    "InMemoryProductRegistry",
    "RiskLevel",
    "RiskScorer",
    "classify",
    "Verifier",
    "VerificationResult",
    "verify_token",
]
