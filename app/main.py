import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from qrseal import QRSealError, ScanMetadata, ScanOutcome, RiskLevel, __version__, verification_url
from qrseal.util import utc_rfc3339

from . import config
from .logging_config import audit_log, configure_logging, set_request_id
from .models import SignRequest, SignResponse, VerifyRequest
from .rate_limit import RateLimiter
from .services import get_services, init_services, services_ready, shutdown_services

logger = logging.getLogger(__name__)

sign_limiter = RateLimiter(config.SIGN_RPM)
verify_limiter = RateLimiter(config.VERIFY_RPM)

ENDPOINTS = [
    "/sign",
    "/sign-qr",
    "/verify-token",
    "/products",
    "/verifications",
    "/analytics",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = not services_ready()
    if owned:
        configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON, log_file=config.LOG_FILE)
        missing = [name for name, ok in config.validate_config().items() if not ok]
        if missing:
            logger.warning("Configuration checks failed: %s", ", ".join(missing))
        init_services()
    yield
    if owned:
        shutdown_services()


app = FastAPI(title="QRSeal", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID") or None)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(QRSealError)
async def qrseal_error_handler(request: Request, exc: QRSealError):
    return JSONResponse(status_code=400, content={"error": exc.message, "code": exc.code})


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") if config.TRUST_PROXY else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(limiter: RateLimiter, request: Request, endpoint: str) -> None:
    ip = client_ip(request)
    result = limiter.check(f"{endpoint}:{ip}")
    if not result.allowed:
        audit_log.rate_limit_exceeded(ip, endpoint)
        raise HTTPException(429, "RATE_LIMIT", headers=result.headers())


@app.get("/")
def health():
    services = get_services()
    db_ok = services.database.ping()
    body = {
        "status": "ok" if db_ok else "error",
        "message": "QRSeal verification service running",
        "database": "connected" if db_ok else "unavailable",
        "timestamp": utc_rfc3339(time.time()),
        "signing": services.signer is not None,
        "kid": services.verifier.verify_key.kid,
        "endpoints": ENDPOINTS,
        "version": __version__,
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


# ============================================================
# Issuance and verification
# ============================================================

@app.post("/sign", response_model=SignResponse)
@app.post("/sign-qr", response_model=SignResponse)
def sign_product(req: SignRequest, request: Request):
    enforce_rate_limit(sign_limiter, request, "/sign")
    services = get_services()
    if services.signer is None:
        raise HTTPException(503, "SIGNING_UNAVAILABLE")

    token = services.signer.issue(req.payload(), expiry=req.expiresIn)
    encoded = token.encode()

    try:
        services.registry.upsert(
            token.product_id,
            name=token.payload.name,
            batch=token.payload.batch,
            last_token=encoded,
            last_issued_at=token.issued_at,
        )
    except Exception:
        # the token is valid without a registry row; it just cannot be deactivated yet
        logger.exception("Registry upsert failed for %s", token.product_id)

    audit_log.token_issued(token.product_id, token.kid, token.alg, token.expires_at)
    return SignResponse(
        signedToken=encoded,
        verifyUrl=verification_url(encoded, config.VERIFY_BASE_URL),
        productId=token.product_id,
        expiresAt=token.expires_at,
    )


@app.post("/verify-token")
def verify_product(request: Request, req: Optional[VerifyRequest] = None):
    enforce_rate_limit(verify_limiter, request, "/verify-token")
    if req is None or not req.signedToken:
        return JSONResponse(
            status_code=400,
            content={"valid": False, "error": "signedToken missing from request body", "code": "missing_token"},
        )

    ip = client_ip(request)
    scan = ScanMetadata(client_ip=ip, user_agent=request.headers.get("user-agent", "unknown"))
    result = get_services().verifier.verify(req.signedToken, scan)

    audit_log.verification(
        result.payload.id if result.payload is not None else None,
        result.valid,
        reason=result.reason,
        risk=result.risk.value if result.risk is not None else None,
        scan_count=result.scan_count,
        client_ip=ip,
    )
    return result.to_dict()


# ============================================================
# Products
# ============================================================

@app.get("/products")
def list_products(
    search: Optional[str] = None,
    active: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    registry = get_services().registry
    records = registry.list(search=search, active=active, limit=limit, offset=offset)
    return {
        "products": [r.to_dict() for r in records],
        "total": registry.count(),
        "limit": limit,
        "offset": offset,
    }


def _set_active(product_id: str, active: bool):
    record = get_services().registry.set_active(product_id, active)
    if record is None:
        raise HTTPException(404, "NOT_FOUND")
    audit_log.product_status_changed(product_id, active)
    return {
        "message": "Product activated" if active else "Product deactivated",
        "product": record.to_dict(),
    }


@app.post("/products/{product_id:path}/deactivate")
def deactivate_product(product_id: str):
    return _set_active(product_id, False)


@app.post("/products/{product_id:path}/activate")
def activate_product(product_id: str):
    return _set_active(product_id, True)


@app.get("/products/{product_id:path}")
def get_product(product_id: str):
    services = get_services()
    record = services.registry.get(product_id)
    if record is None:
        raise HTTPException(404, "NOT_FOUND")
    body = record.to_dict()
    body["scanCount"] = services.ledger.count_total(product_id, ScanOutcome.VALID)
    body["scansLast24h"] = services.scorer.window_count(product_id)
    body["risk"] = services.scorer.score(product_id).value
    return body


# ============================================================
# Verifications
# ============================================================

@app.get("/verifications")
def list_verifications(
    product_id: Optional[str] = None,
    risk: Optional[RiskLevel] = None,
    outcome: Optional[ScanOutcome] = None,
    since: Optional[float] = Query(None, alias="from"),
    until: Optional[float] = Query(None, alias="to"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    events = get_services().ledger.list_events(
        product_id=product_id,
        outcome=outcome,
        risk_level=risk,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return {
        "verifications": [e.to_dict() for e in events],
        "limit": limit,
        "offset": offset,
    }


@app.get("/verifications/suspicious")
def suspicious_verifications(limit: int = Query(100, ge=1, le=1000)):
    events = get_services().ledger.list_events(risk_level=RiskLevel.HIGH, limit=limit)
    return [e.to_dict() for e in events]


# ============================================================
# Analytics
# ============================================================

@app.get("/analytics/overview")
def analytics_overview():
    services = get_services()
    stats = services.ledger.stats()
    return {
        "totalProducts": services.registry.count(),
        "activeProducts": services.registry.count(active=True),
        "totalVerifications": stats["total"],
        "validVerifications": stats["valid"],
        "invalidVerifications": stats["invalid"],
        "verificationsToday": stats["last24h"],
        "highRiskVerifications": stats["highRisk"],
    }


@app.get("/analytics/by-date")
def analytics_by_date(days: int = Query(30, ge=1, le=366)):
    return get_services().ledger.daily_counts(days=days)


@app.get("/analytics/by-product")
def analytics_by_product(limit: int = Query(20, ge=1, le=100)):
    services = get_services()
    rows = []
    for product_id, count in services.ledger.counts_by_product(limit=limit):
        record = services.registry.get(product_id)
        rows.append({
            "productId": product_id,
            "name": record.name if record else None,
            "verificationCount": count,
        })
    return rows


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
