import pytest
from fastapi.testclient import TestClient

from qrseal import StaticKeyProvider, generate_signing_key

from app import main
from app.main import app
from app.services import build_services, init_services, shutdown_services

# Generate keys once at module load time
SIGNING_KEY = generate_signing_key(kid="test-es256")


@pytest.fixture
def signing_key():
    return SIGNING_KEY


@pytest.fixture
def services(tmp_path):
    svc = build_services(StaticKeyProvider(SIGNING_KEY), db_path=str(tmp_path / "qrseal.db"))
    init_services(svc)
    main.sign_limiter.reset()
    main.verify_limiter.reset()
    yield svc
    shutdown_services()


@pytest.fixture
def client(services):
    return TestClient(app)
