"""Pytest configuration and fixtures."""

import os

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PLATFORM_URL", "https://platform.test")
os.environ.setdefault("PLATFORM_ANON_KEY", "anon-key")
os.environ.setdefault("SHEETS_RETRY_BASE_DELAY", "0")

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from metricsync.connectors.platform.client import PlatformClient
from metricsync.connectors.sheets.client import SheetsClient
from metricsync.models import metric_models  # noqa: F401
from metricsync.sync.pipeline import ScopeLocks, SyncOrchestrator

GOOD_TOKEN = "good-token"
USER_ID = "user-1"


class StaticTokenProvider:
    """Hands out a fixed Sheets access token."""

    def __init__(self, token: str = "sheets-token"):
        self.token = token
        self.calls = 0

    async def get_access_token(self) -> str:
        self.calls += 1
        return self.token


def sheets_transport(values=None, tabs=None, calls=None, status_code=200):
    """MockTransport for the Sheets API.

    `values` is the raw 2-D range, `tabs` a list of (title, sheetId).
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"message": "boom"}})
        if "/values/" in request.url.path:
            return httpx.Response(200, json={"values": values or []})
        return httpx.Response(
            200,
            json={
                "sheets": [
                    {"properties": {"title": title, "sheetId": sheet_id}}
                    for title, sheet_id in (tabs or [])
                ]
            },
        )

    return httpx.MockTransport(handler)


def platform_transport(allowed=True, permission_status=200, calls=None):
    """MockTransport for the auth verifier and permission RPC."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.path == "/auth/v1/user":
            if request.headers.get("Authorization") != f"Bearer {GOOD_TOKEN}":
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json={"id": USER_ID, "email": "owner@example.com"})
        if request.url.path == "/rest/v1/rpc/has_permission":
            if permission_status != 200:
                return httpx.Response(permission_status, json={"message": "down"})
            return httpx.Response(200, json=allowed)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_orchestrator(session):
    """Build an orchestrator wired to fake Sheets and platform services."""

    def _make(
        values=None,
        tabs=None,
        allowed=True,
        permission_status=200,
        sheets_calls=None,
        platform_calls=None,
        sheets_status=200,
        date_order=None,
    ) -> SyncOrchestrator:
        transport = sheets_transport(
            values=values, tabs=tabs, calls=sheets_calls, status_code=sheets_status
        )
        return SyncOrchestrator(
            session,
            platform=PlatformClient(
                base_url="https://platform.test",
                api_key="anon-key",
                transport=platform_transport(
                    allowed=allowed,
                    permission_status=permission_status,
                    calls=platform_calls,
                ),
            ),
            token_provider_factory=StaticTokenProvider,
            sheets_client_factory=lambda token: SheetsClient(
                token,
                base_url="https://sheets.test/v4",
                retry_base_delay=0,
                transport=transport,
            ),
            locks=ScopeLocks(),
            date_order=date_order,
        )

    return _make
