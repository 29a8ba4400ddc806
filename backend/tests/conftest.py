import secrets
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import offer_portal.access.models  # noqa: F401
import offer_portal.documents.models  # noqa: F401
from offer_portal.config import Settings
from offer_portal.database import Base, build_engine, build_session_factory
from offer_portal.main import create_app

PUBLISH_KEY = "portal-secret-key"
BASE_URL = "https://offers.example.test"


class MutableClock:
    """Test clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_mode="memory",
        public_base_url=BASE_URL,
        publish_api_key=PUBLISH_KEY,
        require_publish_api_key=True,
    )


@pytest.fixture
def make_client(clock):
    """Build a started TestClient for arbitrary settings; closed at teardown."""
    clients = []

    def _make(settings: Settings) -> TestClient:
        client = TestClient(create_app(settings, clock=clock), base_url=BASE_URL)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, settings) -> TestClient:
    return make_client(settings)


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


def new_token() -> str:
    return secrets.token_urlsafe(24)


@pytest.fixture
def publish(client):
    """Publish a document through the API and return the response data plus its token."""

    def _publish(kind: str = "offers", token: str | None = None, snapshot=None, **fields) -> dict:
        token = token or new_token()
        body = {"token": token, "snapshot": snapshot or {"number": "AN-1001", "amount": 1200}}
        body.update(fields)
        resp = client.post(f"/{kind}", json=body, headers={"X-API-Key": PUBLISH_KEY})
        assert resp.status_code == 200, resp.text
        return {**resp.json()["data"], "token": token}

    return _publish


@pytest.fixture
def open_form(client):
    """Render the offer page and return the CSRF token it minted."""

    def _open(document_id: str) -> str:
        resp = client.get(f"/d/{document_id}", headers={"Accept": "text/html"})
        assert resp.status_code == 200
        token = resp.cookies.get("csrfToken")
        assert token
        client.cookies.clear()
        return token

    return _open
