"""
Key management for QRSeal.

Signing and verification keys for the supported token algorithms, plus key
providers that hand the process its key pair at start-up. The core never
persists keys itself; generation exists for tooling and tests.

Algorithms:
    ES256  ECDSA P-256 / SHA-256, raw 64-byte r||s signatures (cryptography)
    RS256  RSASSA-PKCS1-v1_5 / SHA-256 (cryptography)
    EdDSA  Ed25519 (PyNaCl)
"""

import base64
import binascii
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey as NaclSigningKey
from nacl.signing import VerifyKey as NaclVerifyKey

from .errors import KeyLoadError, SigningError
from .util import sha256_hex

logger = logging.getLogger(__name__)

ALG_ES256 = "ES256"
ALG_RS256 = "RS256"
ALG_EDDSA = "EdDSA"
SUPPORTED_ALGS = (ALG_ES256, ALG_RS256, ALG_EDDSA)

MIN_RSA_KEY_SIZE = 2048

KeyMaterial = Union[str, bytes]


def key_fingerprint(public_der: bytes) -> str:
    """Derive a key id from the DER SubjectPublicKeyInfo of a public key."""
    return sha256_hex(public_der)[:16]


def _der_to_pem(public_der: bytes) -> str:
    key = serialization.load_der_public_key(public_der)
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def _private_to_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


# ============================================================
# Key interfaces
# ============================================================

class VerifyKey(ABC):
    """Public half of a signing key pair."""
    alg: str = ""
    kid: str = ""

    @abstractmethod
    def verify(self, signature: bytes, data: bytes) -> bool:
        """Return True if ``signature`` is valid over ``data``."""

    @abstractmethod
    def public_der(self) -> bytes:
        """DER-encoded SubjectPublicKeyInfo."""

    def to_pem(self) -> str:
        return _der_to_pem(self.public_der())


class SigningKey(ABC):
    """Private half of a signing key pair."""
    alg: str = ""
    kid: str = ""

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` and return the raw signature bytes."""

    @abstractmethod
    def verify_key(self) -> VerifyKey:
        """Return the paired public key."""

    def to_pem(self) -> str:
        raise KeyLoadError(f"{type(self).__name__} cannot be exported")


# ============================================================
# ES256
# ============================================================

class ES256VerifyKey(VerifyKey):
    alg = ALG_ES256

    def __init__(self, public_key: ec.EllipticCurvePublicKey, kid: Optional[str] = None):
        if not isinstance(public_key.curve, ec.SECP256R1):
            raise KeyLoadError(f"ES256 requires a P-256 key, got {public_key.curve.name}")
        self._key = public_key
        self.kid = kid or key_fingerprint(self.public_der())

    def verify(self, signature: bytes, data: bytes) -> bool:
        if len(signature) != 64:
            return False
        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:], "big")
        try:
            self._key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
            return True
        except CryptoInvalidSignature:
            return False

    def public_der(self) -> bytes:
        return self._key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


class ES256SigningKey(SigningKey):
    alg = ALG_ES256

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, kid: Optional[str] = None):
        self._key = private_key
        self._verify_key = ES256VerifyKey(private_key.public_key(), kid)
        self.kid = self._verify_key.kid

    def sign(self, data: bytes) -> bytes:
        der = self._key.sign(data, ec.ECDSA(hashes.SHA256()))
        return der_to_raw_ecdsa(der)

    def verify_key(self) -> VerifyKey:
        return self._verify_key

    def to_pem(self) -> str:
        return _private_to_pem(self._key)


def der_to_raw_ecdsa(der: bytes) -> bytes:
    """Convert a DER ECDSA P-256 signature to the fixed 64-byte r||s form."""
    r, s = decode_dss_signature(der)
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


# ============================================================
# RS256
# ============================================================

class RS256VerifyKey(VerifyKey):
    alg = ALG_RS256

    def __init__(self, public_key: rsa.RSAPublicKey, kid: Optional[str] = None):
        if public_key.key_size < MIN_RSA_KEY_SIZE:
            raise KeyLoadError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
        self._key = public_key
        self.kid = kid or key_fingerprint(self.public_der())

    def verify(self, signature: bytes, data: bytes) -> bool:
        try:
            self._key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
            return True
        except CryptoInvalidSignature:
            return False

    def public_der(self) -> bytes:
        return self._key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


class RS256SigningKey(SigningKey):
    alg = ALG_RS256

    def __init__(self, private_key: rsa.RSAPrivateKey, kid: Optional[str] = None):
        self._key = private_key
        self._verify_key = RS256VerifyKey(private_key.public_key(), kid)
        self.kid = self._verify_key.kid

    def sign(self, data: bytes) -> bytes:
        return self._key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    def verify_key(self) -> VerifyKey:
        return self._verify_key

    def to_pem(self) -> str:
        return _private_to_pem(self._key)


# ============================================================
# EdDSA (Ed25519)
# ============================================================

class Ed25519VerifyKey(VerifyKey):
    alg = ALG_EDDSA

    def __init__(self, verify_key: NaclVerifyKey, kid: Optional[str] = None):
        self._vk = verify_key
        self.kid = kid or key_fingerprint(self.public_der())

    def verify(self, signature: bytes, data: bytes) -> bool:
        try:
            self._vk.verify(data, signature)
            return True
        except (BadSignatureError, CryptoError, ValueError):
            return False

    def public_der(self) -> bytes:
        return ed25519.Ed25519PublicKey.from_public_bytes(bytes(self._vk)).public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def raw_b64(self) -> str:
        return base64.b64encode(bytes(self._vk)).decode("ascii")


class Ed25519SigningKey(SigningKey):
    alg = ALG_EDDSA

    def __init__(self, signing_key: NaclSigningKey, kid: Optional[str] = None):
        self._sk = signing_key
        self._verify_key = Ed25519VerifyKey(signing_key.verify_key, kid)
        self.kid = self._verify_key.kid

    def sign(self, data: bytes) -> bytes:
        return self._sk.sign(data).signature

    def verify_key(self) -> VerifyKey:
        return self._verify_key

    def to_pem(self) -> str:
        return _private_to_pem(ed25519.Ed25519PrivateKey.from_private_bytes(bytes(self._sk)))


# ============================================================
# Loading and generation
# ============================================================

def _as_bytes(data: KeyMaterial) -> bytes:
    if isinstance(data, str):
        # PEM values pasted into environment variables often carry literal "\n"
        data = data.replace("\\n", "\n").strip().encode("utf-8")
    return data


def _b64_raw(data: bytes) -> Optional[bytes]:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None


def wrap_private_key(private_key, kid: Optional[str] = None) -> SigningKey:
    """Wrap a ``cryptography`` private key object in the matching SigningKey."""
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise KeyLoadError(f"ES256 requires a P-256 key, got {private_key.curve.name}")
        return ES256SigningKey(private_key, kid)
    if isinstance(private_key, rsa.RSAPrivateKey):
        if private_key.key_size < MIN_RSA_KEY_SIZE:
            raise KeyLoadError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
        return RS256SigningKey(private_key, kid)
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        seed = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return Ed25519SigningKey(NaclSigningKey(seed), kid)
    raise KeyLoadError(f"Unsupported private key type: {type(private_key).__name__}")


def wrap_public_key(public_key, kid: Optional[str] = None) -> VerifyKey:
    """Wrap a ``cryptography`` public key object in the matching VerifyKey."""
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return ES256VerifyKey(public_key, kid)
    if isinstance(public_key, rsa.RSAPublicKey):
        return RS256VerifyKey(public_key, kid)
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        raw = public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return Ed25519VerifyKey(NaclVerifyKey(raw), kid)
    raise KeyLoadError(f"Unsupported public key type: {type(public_key).__name__}")


def load_signing_key(data: KeyMaterial, kid: Optional[str] = None) -> SigningKey:
    """
    Load a private key.

    Accepts PKCS#8/traditional PEM (P-256, RSA or Ed25519) or a base64
    Ed25519 seed (32 bytes).

    Raises:
        KeyLoadError: If the material cannot be parsed or is unsupported
    """
    raw = _as_bytes(data)
    if b"-----BEGIN" in raw:
        try:
            key = serialization.load_pem_private_key(raw, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyLoadError(f"Cannot parse private key: {e}") from e
        return wrap_private_key(key, kid)

    seed = _b64_raw(raw)
    if seed is not None and len(seed) == 32:
        return Ed25519SigningKey(NaclSigningKey(seed), kid)
    raise KeyLoadError("Private key must be PEM or a base64 Ed25519 seed")


def load_verify_key(data: KeyMaterial, kid: Optional[str] = None) -> VerifyKey:
    """
    Load a public key.

    Accepts SubjectPublicKeyInfo PEM or a base64 raw Ed25519 public key.

    Raises:
        KeyLoadError: If the material cannot be parsed or is unsupported
    """
    raw = _as_bytes(data)
    if b"-----BEGIN" in raw:
        try:
            key = serialization.load_pem_public_key(raw)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyLoadError(f"Cannot parse public key: {e}") from e
        return wrap_public_key(key, kid)

    pub = _b64_raw(raw)
    if pub is not None and len(pub) == 32:
        return Ed25519VerifyKey(NaclVerifyKey(pub), kid)
    raise KeyLoadError("Public key must be PEM or a base64 Ed25519 key")


def generate_signing_key(alg: str = ALG_ES256, kid: Optional[str] = None) -> SigningKey:
    """
    Generate a fresh key pair. For tooling and tests; production keys come
    from a KeyProvider.
    """
    if alg == ALG_ES256:
        return ES256SigningKey(ec.generate_private_key(ec.SECP256R1()), kid)
    if alg == ALG_RS256:
        return RS256SigningKey(rsa.generate_private_key(public_exponent=65537, key_size=2048), kid)
    if alg == ALG_EDDSA:
        return Ed25519SigningKey(NaclSigningKey.generate(), kid)
    raise KeyLoadError(f"Unsupported algorithm: {alg}")


# ============================================================
# Key providers
# ============================================================

class KeyProvider(ABC):
    """Supplies the process key pair at start-up."""

    @abstractmethod
    def get_signing_key(self) -> SigningKey:
        """Return the signing key, or raise KeyLoadError if none is configured."""

    @abstractmethod
    def get_verify_key(self) -> VerifyKey:
        """Return the verification key."""

    def can_sign(self) -> bool:
        try:
            self.get_signing_key()
            return True
        except KeyLoadError:
            return False


class StaticKeyProvider(KeyProvider):
    """Holds an already-loaded key pair."""

    def __init__(self, signing_key: Optional[SigningKey] = None,
                 verify_key: Optional[VerifyKey] = None):
        if signing_key is None and verify_key is None:
            raise KeyLoadError("StaticKeyProvider needs at least one key")
        self._signing_key = signing_key
        self._verify_key = verify_key or signing_key.verify_key()

    def get_signing_key(self) -> SigningKey:
        if self._signing_key is None:
            raise KeyLoadError("No signing key configured")
        return self._signing_key

    def get_verify_key(self) -> VerifyKey:
        return self._verify_key


class FileKeyProvider(StaticKeyProvider):
    """
    Loads keys from files once at initialization.

    Key files are PEM, or JSON of the form
    ``{"kid": "...", "private_key": "<PEM or base64 seed>"}`` /
    ``{"kid": "...", "public_key": "..."}``.
    A verification-only deployment may omit the private key.
    """

    def __init__(self, private_key_path: Optional[str] = None,
                 public_key_path: Optional[str] = None,
                 kid: Optional[str] = None):
        signing_key = None
        verify_key = None
        if private_key_path:
            material, file_kid = self._read(private_key_path, "private_key")
            signing_key = load_signing_key(material, kid or file_kid)
        if public_key_path:
            material, file_kid = self._read(public_key_path, "public_key")
            verify_key = load_verify_key(material, kid or file_kid or (signing_key.kid if signing_key else None))
        if signing_key and verify_key and signing_key.verify_key().public_der() != verify_key.public_der():
            raise KeyLoadError("Public key file does not match private key")
        super().__init__(signing_key, verify_key)
        logger.info("Loaded key pair from files (kid=%s, alg=%s)", self._verify_key.kid, self._verify_key.alg)

    @staticmethod
    def _read(path: str, field: str):
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise KeyLoadError(f"Cannot read key file {path}: {e}") from e
        if path.endswith(".json"):
            try:
                raw = json.loads(text)
            except ValueError as e:
                raise KeyLoadError(f"Cannot parse key file {path}: {e}") from e
            material = raw.get(field) or raw.get(f"{field}_b64")
            if not material:
                raise KeyLoadError(f"{path} has no {field}")
            return material, raw.get("kid")
        return text, None


class EnvKeyProvider(StaticKeyProvider):
    """Loads PEM keys from environment variables (``PRIVATE_KEY`` / ``PUBLIC_KEY``)."""

    def __init__(self, private_env: str = "PRIVATE_KEY", public_env: str = "PUBLIC_KEY",
                 kid: Optional[str] = None):
        private_pem = os.getenv(private_env, "")
        public_pem = os.getenv(public_env, "")
        if not private_pem and not public_pem:
            raise KeyLoadError(f"Neither {private_env} nor {public_env} is set")
        signing_key = load_signing_key(private_pem, kid) if private_pem else None
        verify_key = load_verify_key(public_pem, kid or (signing_key.kid if signing_key else None)) if public_pem else None
        super().__init__(signing_key, verify_key)


class KmsES256SigningKey(SigningKey):
    """
    ES256 signing key held in AWS KMS.

    Uses the KMS Sign API with SigningAlgorithm ECDSA_SHA_256 and
    MessageType RAW; KMS returns DER which is converted to r||s.
    """
    alg = ALG_ES256

    def __init__(self, client, kms_key_id: str, verify_key: ES256VerifyKey):
        self._client = client
        self._kms_key_id = kms_key_id
        self._verify_key = verify_key
        self.kid = verify_key.kid

    def sign(self, data: bytes) -> bytes:
        try:
            resp = self._client.sign(
                KeyId=self._kms_key_id,
                Message=data,
                MessageType="RAW",
                SigningAlgorithm="ECDSA_SHA_256",
            )
        except Exception as e:
            raise SigningError(f"KMS sign failed: {e}") from e
        return der_to_raw_ecdsa(resp["Signature"])

    def verify_key(self) -> VerifyKey:
        return self._verify_key


class AwsKmsKeyProvider(KeyProvider):
    """
    AWS KMS key provider for an ECC_NIST_P256 SIGN_VERIFY key.

    The public key is fetched once with GetPublicKey and used for local
    verification.
    """

    def __init__(self, kms_key_id: str, region: Optional[str] = None,
                 kid: Optional[str] = None, client=None):
        self._kms_key_id = kms_key_id
        self._region = region
        self._kid = kid
        self._client = client
        self._signing_key: Optional[KmsES256SigningKey] = None

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError(
                    "boto3 required for AWS KMS signing. Install with: pip install qrseal[aws]"
                ) from e
            self._client = boto3.client("kms", region_name=self._region)
        return self._client

    def get_signing_key(self) -> SigningKey:
        if self._signing_key is None:
            client = self._get_client()
            resp = client.get_public_key(KeyId=self._kms_key_id)
            public_key = serialization.load_der_public_key(resp["PublicKey"])
            if not isinstance(public_key, ec.EllipticCurvePublicKey):
                raise KeyLoadError("KMS key is not an ECC_NIST_P256 key")
            verify_key = ES256VerifyKey(public_key, self._kid)
            self._signing_key = KmsES256SigningKey(client, self._kms_key_id, verify_key)
        return self._signing_key

    def get_verify_key(self) -> VerifyKey:
        return self.get_signing_key().verify_key()


def get_key_provider(
    provider_type: str = "file",
    private_key_path: Optional[str] = None,
    public_key_path: Optional[str] = None,
    kid: Optional[str] = None,
    kms_key_id: Optional[str] = None,
    kms_region: Optional[str] = None,
) -> KeyProvider:
    """
    Factory function to create the configured key provider.

    Args:
        provider_type: "file", "env" or "aws_kms"
        private_key_path: Path to the private key (file provider)
        public_key_path: Path to the public key (file provider)
        kid: Key id override
        kms_key_id: AWS KMS key ID (KMS provider)
        kms_region: AWS region (KMS provider)

    Returns:
        Configured KeyProvider instance
    """
    if provider_type == "aws_kms":
        if not kms_key_id:
            raise KeyLoadError("AWS_KMS_KEY_ID required for aws_kms key provider")
        return AwsKmsKeyProvider(kms_key_id=kms_key_id, region=kms_region, kid=kid)
    if provider_type == "env":
        return EnvKeyProvider(kid=kid)
    if provider_type == "file":
        return FileKeyProvider(private_key_path, public_key_path, kid)
    raise KeyLoadError(f"Unknown key provider: {provider_type}")
