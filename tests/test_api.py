from qrseal import sign, generate_signing_key

from app import config, main
from app.rate_limit import RateLimiter

WIDGET = {"id": "SKU-42", "name": "Widget", "batch": "2026-10", "metadata": {"color": "red"}}


def issue(client, payload=WIDGET, path="/sign"):
    r = client.post(path, json=payload)
    assert r.status_code == 200, r.text
    return r.json()


def verify(client, token, **headers):
    return client.post("/verify-token", json={"signedToken": token}, headers=headers)


# Health
def test_health(client, signing_key):
    r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["signing"] is True
    assert body["kid"] == signing_key.kid
    assert "/verify-token" in body["endpoints"]


def test_request_id_echoed(client):
    r = client.get("/", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    assert client.get("/").headers["X-Request-ID"]


# Issuance
def test_sign_returns_token_and_url(client, signing_key):
    body = issue(client)
    assert body["productId"] == "SKU-42"
    assert body["signedToken"].startswith("qs1.")
    assert body["verifyUrl"].endswith("?p=" + body["signedToken"])
    assert body["expiresAt"] is None


def test_sign_qr_alias(client):
    body = issue(client, path="/sign-qr")
    assert body["productId"] == "SKU-42"


def test_sign_registers_product(client):
    body = issue(client)
    product = client.get("/products/SKU-42").json()
    assert product["name"] == "Widget"
    assert product["isActive"] is True
    assert product["lastToken"] == body["signedToken"]


def test_sign_with_expiry(client):
    body = issue(client, dict(WIDGET, expiresIn=3600))
    assert body["expiresAt"] is not None
    assert verify(client, body["signedToken"]).json()["expiresAt"] == body["expiresAt"]


def test_sign_invalid_payload(client):
    r = client.post("/sign", json={"id": "SKU-42"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_payload"

    r = client.post("/sign", json=dict(WIDGET, color="red"))
    assert r.status_code == 400
    assert "color" in r.json()["error"]


def test_sign_rejects_bad_expiry(client):
    r = client.post("/sign", json=dict(WIDGET, expiresIn=0))
    assert r.status_code == 422


# Verification
def test_verify_valid(client):
    token = issue(client)["signedToken"]
    r = verify(client, token)
    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is True
    assert body["payload"]["id"] == "SKU-42"
    assert body["payload"]["metadata"] == {"color": "red"}
    assert body["scanCount"] == 1
    assert body["risk"] == "low"


def test_verify_tampered(client):
    token = issue(client)["signedToken"]
    forged = sign(WIDGET, generate_signing_key()).encode()
    r = verify(client, forged)
    assert r.status_code == 200
    assert r.json() == {"valid": False, "reason": "invalid_signature"}
    assert verify(client, token[:-4]).json()["reason"] == "malformed"


def test_verify_missing_token(client):
    for body in ({}, {"signedToken": ""}):
        r = client.post("/verify-token", json=body)
        assert r.status_code == 400
        assert r.json()["code"] == "missing_token"
        assert r.json()["valid"] is False


def test_deactivate_flow(client):
    token = issue(client)["signedToken"]
    assert verify(client, token).json()["valid"] is True

    r = client.post("/products/SKU-42/deactivate")
    assert r.status_code == 200
    assert r.json()["product"]["isActive"] is False

    body = verify(client, token).json()
    assert body["valid"] is False
    assert body["reason"] == "deactivated"
    assert body["risk"] == "high"
    assert body["payload"]["id"] == "SKU-42"

    assert client.post("/products/SKU-42/activate").json()["product"]["isActive"] is True
    assert verify(client, token).json()["valid"] is True


def test_resign_keeps_deactivation(client):
    issue(client)
    client.post("/products/SKU-42/deactivate")
    token = issue(client)["signedToken"]
    assert verify(client, token).json()["reason"] == "deactivated"


def test_risk_escalates(client):
    token = issue(client)["signedToken"]
    risks = [verify(client, token).json()["risk"] for _ in range(11)]
    assert risks[2] == "low"
    assert risks[3] == "medium"
    assert risks[10] == "high"


# Products
def test_products_list_and_search(client):
    issue(client)
    issue(client, {"id": "SKU-7", "name": "Gadget"})
    client.post("/products/SKU-7/deactivate")

    body = client.get("/products").json()
    assert body["total"] == 2
    assert {p["productId"] for p in body["products"]} == {"SKU-42", "SKU-7"}
    assert [p["productId"] for p in client.get("/products?search=gadget").json()["products"]] == ["SKU-7"]
    assert [p["productId"] for p in client.get("/products?active=true").json()["products"]] == ["SKU-42"]
    assert client.get("/products?limit=0").status_code == 422


def test_product_ids_with_slashes(client):
    issue(client, {"id": "acme/SKU-1", "name": "Widget"})
    assert client.get("/products/acme/SKU-1").json()["productId"] == "acme/SKU-1"
    assert client.post("/products/acme/SKU-1/deactivate").json()["product"]["isActive"] is False


def test_unknown_product(client):
    assert client.get("/products/nope").status_code == 404
    assert client.post("/products/nope/deactivate").status_code == 404
    assert client.post("/products/nope/activate").status_code == 404


def test_product_detail_counts(client):
    token = issue(client)["signedToken"]
    verify(client, token)
    verify(client, token)
    body = client.get("/products/SKU-42").json()
    assert body["scanCount"] == 2
    assert body["scansLast24h"] == 2
    assert body["risk"] == "low"


# Verifications and analytics
def test_verifications_log(client):
    token = issue(client)["signedToken"]
    verify(client, token, **{"User-Agent": "Scanner/1.0", "X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
    verify(client, "garbage")

    events = client.get("/verifications").json()["verifications"]
    assert len(events) == 2
    assert {e["outcome"] for e in events} == {"valid", "invalid"}

    [valid] = client.get("/verifications?outcome=valid").json()["verifications"]
    assert valid["productId"] == "SKU-42"
    assert valid["clientIp"] == "203.0.113.5"
    assert valid["userAgent"] == "Scanner/1.0"

    [invalid] = client.get("/verifications?risk=high").json()["verifications"]
    assert invalid["productId"] == "unknown"
    assert invalid["error"] == "malformed"
    assert client.get("/verifications?product_id=SKU-42").json()["verifications"] == [valid]
    assert client.get("/verifications?risk=severe").status_code == 422


def test_suspicious(client):
    token = issue(client)["signedToken"]
    verify(client, token)
    client.post("/products/SKU-42/deactivate")
    verify(client, token)
    events = client.get("/verifications/suspicious").json()
    assert [e["outcome"] for e in events] == ["deactivated"]


def test_analytics(client):
    token = issue(client)["signedToken"]
    issue(client, {"id": "SKU-7", "name": "Gadget"})
    verify(client, token)
    verify(client, token)
    verify(client, "garbage")

    overview = client.get("/analytics/overview").json()
    assert overview == {
        "totalProducts": 2,
        "activeProducts": 2,
        "totalVerifications": 3,
        "validVerifications": 2,
        "invalidVerifications": 1,
        "verificationsToday": 3,
        "highRiskVerifications": 1,
    }

    [today] = client.get("/analytics/by-date?days=7").json()
    assert today["total"] == 3
    assert today["valid"] == 2

    assert client.get("/analytics/by-product").json() == [
        {"productId": "SKU-42", "name": "Widget", "verificationCount": 2},
    ]


# Rate limiting
def test_sign_rate_limited(client, monkeypatch):
    monkeypatch.setattr(main, "sign_limiter", RateLimiter(1))
    issue(client)
    r = client.post("/sign", json=WIDGET)
    assert r.status_code == 429
    assert r.headers["X-RateLimit-Limit"] == "1"
    assert int(r.headers["Retry-After"]) >= 1


def test_verify_limit_is_per_client(client, monkeypatch):
    monkeypatch.setattr(main, "verify_limiter", RateLimiter(1))
    token = issue(client)["signedToken"]
    assert verify(client, token, **{"X-Forwarded-For": "198.51.100.1"}).status_code == 200
    assert verify(client, token, **{"X-Forwarded-For": "198.51.100.1"}).status_code == 429
    assert verify(client, token, **{"X-Forwarded-For": "198.51.100.2"}).status_code == 200


def test_sign_accepts_free_form_ids(client):
    body = issue(client, {"id": "SKU 42", "name": "Größe-1"})
    assert body["productId"] == "SKU 42"
    assert verify(client, body["signedToken"]).json()["payload"]["id"] == "SKU 42"


def test_forwarded_for_ignored_without_trusted_proxy(client, monkeypatch):
    monkeypatch.setattr(config, "TRUST_PROXY", False)
    monkeypatch.setattr(main, "sign_limiter", RateLimiter(1))
    codes = [
        client.post("/sign", json=WIDGET, headers={"X-Forwarded-For": f"198.51.100.{i}"}).status_code
        for i in range(3)
    ]
    assert codes == [200, 429, 429]
