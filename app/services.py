"""
Service wiring for the QRSeal HTTP surface.

Builds the key provider, SQLite-backed registry and ledger, signer and
verifier from ``app.config``, and holds the process-wide instance used by
the routes.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from qrseal import (
    Database,
    KeyLoadError,
    KeyProvider,
    ProductRegistry,
    RiskScorer,
    ScanLedger,
    Signer,
    SqliteProductRegistry,
    SqliteScanLedger,
    StaticKeyProvider,
    Verifier,
    generate_signing_key,
    get_key_provider,
)

from . import config
from .logging_config import audit_log

logger = logging.getLogger(__name__)


@dataclass
class Services:
    database: Database
    registry: ProductRegistry
    ledger: ScanLedger
    scorer: RiskScorer
    verifier: Verifier
    key_provider: KeyProvider
    signer: Optional[Signer] = None

    def close(self) -> None:
        self.database.close()


def load_key_provider() -> KeyProvider:
    """
    Key provider selected by QRSEAL_KEY_PROVIDER.

    Outside production a missing key pair is replaced by an ephemeral one so
    the service can start; tokens it issues do not survive a restart.
    """
    try:
        return get_key_provider(
            provider_type=config.KEY_PROVIDER,
            private_key_path=config.PRIVATE_KEY_PATH,
            public_key_path=config.PUBLIC_KEY_PATH,
            kid=config.SIGNING_KID,
            kms_key_id=config.AWS_KMS_KEY_ID,
            kms_region=config.AWS_REGION or None,
        )
    except KeyLoadError as e:
        if config.is_production():
            raise
        logger.warning("Key provider unavailable (%s); generating ephemeral %s key", e, config.SIGNING_ALG)
        audit_log.security_event("EPHEMERAL_SIGNING_KEY", severity="high", alg=config.SIGNING_ALG)
        return StaticKeyProvider(generate_signing_key(config.SIGNING_ALG))


def _ledger_failure(product_id: str, error: Exception) -> None:
    audit_log.ledger_write_failure(product_id, str(error))


def build_services(key_provider: Optional[KeyProvider] = None, db_path: Optional[str] = None) -> Services:
    """
    Assemble the service graph.

    Args:
        key_provider: Provider override; defaults to the configured one
        db_path: SQLite path override; defaults to QRSEAL_DB_PATH
    """
    key_provider = key_provider or load_key_provider()
    verify_key = key_provider.get_verify_key()

    database = Database(db_path or config.DB_PATH)
    database.init_schema()
    registry = SqliteProductRegistry(database)
    ledger = SqliteScanLedger(database)
    scorer = RiskScorer(
        ledger,
        window=timedelta(hours=config.RISK_WINDOW_HOURS),
        medium_above=config.RISK_MEDIUM_ABOVE,
        high_above=config.RISK_HIGH_ABOVE,
    )
    verifier = Verifier(verify_key, registry=registry, ledger=ledger, scorer=scorer,
                        on_ledger_failure=_ledger_failure)

    signer = None
    if key_provider.can_sign():
        signer = Signer(key_provider.get_signing_key(), default_expiry=config.TOKEN_TTL_SECONDS or None)
        # issuance has no caller authentication; make the exposure visible
        audit_log.security_event("UNAUTHENTICATED_SIGNER_ENABLED", severity="low", kid=signer.kid)
    else:
        logger.warning("No signing key configured; /sign is disabled")

    logger.info("Services ready (kid=%s, alg=%s, db=%s)", verify_key.kid, verify_key.alg, database.path)
    return Services(
        database=database,
        registry=registry,
        ledger=ledger,
        scorer=scorer,
        verifier=verifier,
        key_provider=key_provider,
        signer=signer,
    )


_services: Optional[Services] = None


def init_services(services: Optional[Services] = None) -> Services:
    """Install the process-wide services, building them from config if not given."""
    global _services
    _services = services or build_services()
    return _services


def get_services() -> Services:
    if _services is None:
        raise RuntimeError("services not initialized")
    return _services


def services_ready() -> bool:
    return _services is not None


def shutdown_services() -> None:
    global _services
    if _services is not None:
        _services.close()
        _services = None
