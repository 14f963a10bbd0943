"""Shared fixtures: a SQLite identity store and the services built on it."""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from httpx import ASGITransport, AsyncClient, MockTransport
from uuid_extensions import uuid7str

from auth_gateway.config import Settings
from auth_gateway.db import create_tables, make_engine, make_session_factory
from auth_gateway.schema import User
from auth_gateway.services import (
    ChallengeStore,
    IdentityResolver,
    PasskeyCeremonyManager,
    SessionService,
)
from auth_gateway.store import SqlIdentityStore
from tests.authenticator import SoftwareAuthenticator
from tests.helpers import FakeTokenEndpoint

ORIGIN = "https://localhost:5173"


@pytest.fixture(scope="session")
def apple_private_key() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def settings(tmp_path, apple_private_key: str) -> Settings:
    """Test settings backed by a throwaway SQLite file."""
    return Settings(
        public_base_url=ORIGIN,
        webauthn_rp_id="localhost",
        webauthn_origin=ORIGIN,
        db_url=f"sqlite:///{tmp_path / 'auth.db'}",
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        apple_client_id="com.example.web",
        apple_team_id="TEAM123456",
        apple_key_id="KEY1234567",
        apple_private_key=apple_private_key,
    )


@pytest.fixture
def store(settings: Settings) -> Generator[SqlIdentityStore, None, None]:
    engine = make_engine(settings)
    create_tables(engine)
    yield SqlIdentityStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def challenges(store: SqlIdentityStore) -> ChallengeStore:
    return ChallengeStore(store)


@pytest.fixture
def resolver(store: SqlIdentityStore) -> IdentityResolver:
    return IdentityResolver(store)


@pytest.fixture
def sessions(store: SqlIdentityStore, settings: Settings) -> SessionService:
    return SessionService.from_settings(store, settings)


@pytest.fixture
def passkeys(
    store: SqlIdentityStore,
    challenges: ChallengeStore,
    resolver: IdentityResolver,
    sessions: SessionService,
    settings: Settings,
) -> PasskeyCeremonyManager:
    return PasskeyCeremonyManager(
        store=store,
        challenges=challenges,
        resolver=resolver,
        sessions=sessions,
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
        origin=settings.webauthn_origin,
        timeout=settings.webauthn_timeout,
    )


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    """Stands in for the providers' token endpoints."""
    return FakeTokenEndpoint()


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator(origin=ORIGIN)


@pytest.fixture
async def alice(store: SqlIdentityStore) -> User:
    now = datetime.now(timezone.utc)
    return await store.create_user(
        User(
            id=uuid7str(),
            email="alice@example.com",
            name="Alice",
            created_at=now,
            updated_at=now,
        )
    )


@pytest.fixture
async def client(
    settings: Settings,
    store: SqlIdentityStore,
    token_endpoint: FakeTokenEndpoint,
) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client; cookies are passed explicitly by the tests."""
    from auth_gateway.main import create_app

    app = create_app(settings, store=store, provider_transport=MockTransport(token_endpoint))
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as http_client:
        yield http_client
    await app.state.providers.close()
