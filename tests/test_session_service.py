"""Tests for session cookies and bearer token pairs."""

import asyncio
from datetime import timedelta

import pytest

from auth_gateway.exceptions import InvalidOrExpired, InvalidRequest, SessionExpired, SessionNotFound
from auth_gateway.schema import Platform
from auth_gateway.services import SessionService
from auth_gateway.utils import hash_token


class TestSessions:
    async def test_create_and_validate(self, sessions: SessionService, alice):
        token, session = await sessions.create_session(alice.id, user_agent="pytest")

        assert len(token) == 32  # 20 bytes of unpadded base32
        assert token == token.lower()
        assert session.id == hash_token(token)
        assert session.id != token

        user, validated = await sessions.validate_session(token)
        assert user.id == alice.id
        assert validated.user_agent == "pytest"

    async def test_unknown_session(self, sessions: SessionService):
        with pytest.raises(SessionNotFound):
            await sessions.validate_session("not-a-session")
        with pytest.raises(SessionNotFound):
            await sessions.validate_session("")

    async def test_expired_session_is_removed(self, store, alice):
        short = SessionService(store, session_ttl=timedelta(seconds=-1))
        token, session = await short.create_session(alice.id)

        with pytest.raises(SessionExpired):
            await short.validate_session(token)
        assert await store.get_session(session.id) is None

    async def test_invalidate(self, sessions: SessionService, alice):
        token, session = await sessions.create_session(alice.id)

        assert await sessions.invalidate_session(session.id) is True
        with pytest.raises(SessionNotFound):
            await sessions.validate_session(token)
        assert await sessions.invalidate_session(session.id) is False

    async def test_revoke_all_for_user(self, sessions: SessionService, alice):
        web_token, _ = await sessions.create_session(alice.id)
        pair = await sessions.create_token_pair(alice.id, Platform.ANDROID)

        assert await sessions.revoke_all_for_user(alice.id) == 2

        with pytest.raises(SessionNotFound):
            await sessions.validate_session(web_token)
        with pytest.raises(InvalidOrExpired):
            await sessions.validate_access_token(pair.access_token)


class TestTokenPairs:
    async def test_create_and_validate(self, sessions: SessionService, alice, store):
        pair = await sessions.create_token_pair(alice.id, Platform.IOS, "MyApp/1.0")

        assert pair.access_token != pair.refresh_token
        assert pair.refresh_expires_at - pair.access_expires_at > timedelta(days=29)
        record = await store.get_token_by_access_hash(hash_token(pair.access_token))
        assert record.refresh_token_hash == hash_token(pair.refresh_token)

        user, validated = await sessions.validate_access_token(pair.access_token)
        assert user.id == alice.id
        assert validated.platform == Platform.IOS

    async def test_expired_access_token(self, store, alice):
        short = SessionService(store, access_token_ttl=timedelta(seconds=-1))
        pair = await short.create_token_pair(alice.id, Platform.API)

        with pytest.raises(InvalidOrExpired):
            await short.validate_access_token(pair.access_token)

    async def test_scenario_e_refresh_token_is_single_use(self, sessions: SessionService, alice):
        first = await sessions.create_token_pair(alice.id, Platform.IOS)

        second = await sessions.refresh_access_token(first.refresh_token)

        assert second.access_token != first.access_token
        assert second.refresh_token != first.refresh_token
        assert second.platform == Platform.IOS
        with pytest.raises(InvalidOrExpired):
            await sessions.refresh_access_token(first.refresh_token)
        with pytest.raises(InvalidOrExpired):
            await sessions.validate_access_token(first.access_token)

        user, _ = await sessions.validate_access_token(second.access_token)
        assert user.id == alice.id

    async def test_threaded_refreshes_have_one_winner(self, sessions: SessionService, alice, store):
        pair = await sessions.create_token_pair(alice.id, Platform.IOS)

        def refresh_in_thread():
            return asyncio.run(sessions.refresh_access_token(pair.refresh_token))

        results = await asyncio.gather(
            *(asyncio.to_thread(refresh_in_thread) for _ in range(4)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(e, InvalidOrExpired) for e in losers)

        record = await store.get_token_by_refresh_hash(hash_token(pair.refresh_token))
        assert record.revoked is True
        user, _ = await sessions.validate_access_token(winners[0].access_token)
        assert user.id == alice.id

    async def test_refresh_without_rotation(self, store, alice):
        lenient = SessionService(store, rotate_refresh_tokens=False)
        first = await lenient.create_token_pair(alice.id, Platform.ANDROID)

        await lenient.refresh_access_token(first.refresh_token)
        again = await lenient.refresh_access_token(first.refresh_token)

        assert again.user_id == alice.id

    async def test_refresh_without_rotation_still_honours_revocation(self, store, alice):
        lenient = SessionService(store, rotate_refresh_tokens=False)
        pair = await lenient.create_token_pair(alice.id, Platform.ANDROID)
        await lenient.revoke_token(pair.token_id)

        with pytest.raises(InvalidOrExpired):
            await lenient.refresh_access_token(pair.refresh_token)

    async def test_expired_refresh_token(self, store, alice):
        short = SessionService(store, refresh_token_ttl=timedelta(seconds=-1))
        pair = await short.create_token_pair(alice.id, Platform.API)

        with pytest.raises(InvalidOrExpired):
            await short.refresh_access_token(pair.refresh_token)

    async def test_unknown_refresh_token(self, sessions: SessionService):
        with pytest.raises(InvalidOrExpired):
            await sessions.refresh_access_token("nope")
        with pytest.raises(InvalidOrExpired):
            await sessions.refresh_access_token("")

    async def test_revoke_token(self, sessions: SessionService, alice):
        pair = await sessions.create_token_pair(alice.id, Platform.API)

        assert await sessions.revoke_token(pair.token_id) is True
        with pytest.raises(InvalidOrExpired):
            await sessions.validate_access_token(pair.access_token)
        assert await sessions.revoke_token(pair.token_id) is False


class TestPlatformIssuance:
    async def test_web_gets_a_session(self, sessions: SessionService, alice):
        issued = await sessions.issue_for_platform(alice, Platform.WEB)

        assert issued.session_token
        assert issued.session.platform == Platform.WEB
        assert issued.tokens is None

    @pytest.mark.parametrize("platform", [Platform.IOS, Platform.ANDROID, Platform.API])
    async def test_native_platforms_get_tokens(self, sessions: SessionService, alice, platform):
        issued = await sessions.issue_for_platform(alice, platform)

        assert issued.session is None
        assert issued.tokens.platform == platform


class TestSessionExchange:
    async def test_session_becomes_token_pair(self, sessions: SessionService, alice, store):
        token, _ = await sessions.create_session(alice.id)

        issued = await sessions.exchange_session(token, Platform.IOS, "MyApp/1.0")

        assert issued.user.id == alice.id
        assert issued.tokens.platform == Platform.IOS
        user, record = await sessions.validate_access_token(issued.tokens.access_token)
        assert user.id == alice.id
        assert record.user_agent == "MyApp/1.0"

        stored = await store.get_user(alice.id)
        assert stored.last_login_platform == Platform.IOS
        assert stored.last_login_at is not None

        # The web session is left alone
        await sessions.validate_session(token)

    async def test_web_platform_is_refused(self, sessions: SessionService, alice):
        token, _ = await sessions.create_session(alice.id)

        with pytest.raises(InvalidRequest):
            await sessions.exchange_session(token, Platform.WEB)

    async def test_unknown_session(self, sessions: SessionService):
        with pytest.raises(SessionNotFound):
            await sessions.exchange_session("not-a-session", Platform.ANDROID)

    async def test_expired_session(self, store, alice):
        short = SessionService(store, session_ttl=timedelta(seconds=-1))
        token, _ = await short.create_session(alice.id)

        with pytest.raises(SessionExpired):
            await short.exchange_session(token, Platform.API)
