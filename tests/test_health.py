from fastapi.testclient import TestClient

from jobsync.main import app
from jobsync.services.repository import RepositoryUnavailableError, get_repository
from jobsync.services.store import InMemoryRepository


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class UnreachableRepository(InMemoryRepository):
    async def ping(self) -> None:
        raise RepositoryUnavailableError("database unavailable")


def test_readyz_reports_reachable_storage() -> None:
    app.dependency_overrides[get_repository] = InMemoryRepository
    try:
        response = TestClient(app).get("/readyz")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "storage": "ok"}


def test_readyz_is_503_when_storage_is_down() -> None:
    app.dependency_overrides[get_repository] = UnreachableRepository
    try:
        response = TestClient(app).get("/readyz")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503
    assert response.json() == {"detail": "storage unavailable"}
