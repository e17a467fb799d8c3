import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.listener import services as services_module
from app.services.listener.services import get_listener_services
from tests.helpers.listener_fakes import build_test_services


@pytest.fixture
def listener_services(monkeypatch):
    """In-memory listener bundle installed as the process-wide singleton."""
    bundle = build_test_services()
    monkeypatch.setattr(services_module, "_SERVICES", bundle)
    return bundle


@pytest.fixture
def client(listener_services):
    app.dependency_overrides[get_listener_services] = lambda: listener_services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_listener_services, None)
