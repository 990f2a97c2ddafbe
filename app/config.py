"""
Configuration module for the QRSeal service.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("QRSEAL_ENV", "dev")  # dev|stage|prod

# Rate limits (requests per minute, per client)
SIGN_RPM = int(os.getenv("SIGN_RPM", "60"))
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "600"))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
# Honor X-Forwarded-For only when a trusted reverse proxy sets it
TRUST_PROXY = os.getenv("TRUST_PROXY", "true").lower() in ("1", "true", "yes")

# Storage
DB_PATH = os.getenv("QRSEAL_DB_PATH", "data/qrseal.db")

# Signing configuration
KEY_PROVIDER = os.getenv("QRSEAL_KEY_PROVIDER", "file")  # file|env|aws_kms
PRIVATE_KEY_PATH = os.getenv("PRIVATE_KEY_PATH", "secrets/private.pem")
PUBLIC_KEY_PATH = os.getenv("PUBLIC_KEY_PATH", "secrets/public.pem")
SIGNING_KID = os.getenv("SIGNING_KID") or None
SIGNING_ALG = os.getenv("SIGNING_ALG", "ES256")
AWS_KMS_KEY_ID = os.getenv("AWS_KMS_KEY_ID", "")
AWS_REGION = os.getenv("AWS_REGION", "")

# Tokens
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "0"))  # 0 = no expiry
VERIFY_BASE_URL = os.getenv("VERIFY_BASE_URL", "http://localhost:3000/verify")

# Risk scoring
RISK_WINDOW_HOURS = float(os.getenv("RISK_WINDOW_HOURS", "24"))
RISK_MEDIUM_ABOVE = int(os.getenv("RISK_MEDIUM_ABOVE", "3"))
RISK_HIGH_ABOVE = int(os.getenv("RISK_HIGH_ABOVE", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("LOG_FILE") or None


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that the configured key material and settings are usable.
    Returns dict of check -> ok.
    """
    checks = {
        "key_provider": KEY_PROVIDER in ("file", "env", "aws_kms"),
        "signing_alg": SIGNING_ALG in ("ES256", "RS256", "EdDSA"),
        "risk_thresholds": 0 <= RISK_MEDIUM_ABOVE <= RISK_HIGH_ABOVE,
        "token_ttl": TOKEN_TTL_SECONDS >= 0,
    }

    if KEY_PROVIDER == "file":
        checks["public_key"] = Path(PUBLIC_KEY_PATH).exists()
        checks["private_key"] = Path(PRIVATE_KEY_PATH).exists()
    elif KEY_PROVIDER == "env":
        checks["public_key"] = bool(os.getenv("PUBLIC_KEY") or os.getenv("PRIVATE_KEY"))
        checks["private_key"] = bool(os.getenv("PRIVATE_KEY"))
    elif KEY_PROVIDER == "aws_kms":
        checks["kms_key_id"] = bool(AWS_KMS_KEY_ID)

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("QRSEAL_DEBUG", "").lower() in ("1", "true", "yes")
