from fastapi.testclient import TestClient

from app.main import app
from app.services.repository import RepositoryUnavailableError, get_repository


class FakePingRepository:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def ping(self) -> None:
        if self.error is not None:
            raise self.error


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_reports_app_name() -> None:
    response = TestClient(app).get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "app": "blog-api"}


def test_readyz_reports_database_state() -> None:
    app.dependency_overrides[get_repository] = lambda: FakePingRepository()
    try:
        assert TestClient(app).get("/readyz").json() == {"status": "ready"}

        app.dependency_overrides[get_repository] = lambda: FakePingRepository(
            RepositoryUnavailableError("BLOG_DATABASE_URL is required")
        )
        response = TestClient(app).get("/readyz")
        assert response.status_code == 503
        assert response.json()["detail"] == "BLOG_DATABASE_URL is required"
    finally:
        app.dependency_overrides.clear()
