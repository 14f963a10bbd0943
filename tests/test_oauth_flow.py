"""Tests for the OAuth authorization-code flow with PKCE."""

import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt

from auth_gateway.cache import TTLCache
from auth_gateway.exceptions import (
    InternalError,
    InvalidRequest,
    ProviderError,
    StateMismatch,
)
from auth_gateway.schema import OAuthProviderName, Platform
from auth_gateway.services import OAuthFlowManager, ProviderRegistry
from auth_gateway.services.pkce import code_challenge_s256
from auth_gateway.services.providers import AppleProvider, GoogleProvider, parse_apple_user
from tests.helpers import jwk, make_id_token, pem


@pytest.fixture
async def registry(settings, token_endpoint):
    registry = ProviderRegistry(
        settings,
        TTLCache(max_age=settings.provider_cache_max_age),
        transport=httpx.MockTransport(token_endpoint),
    )
    yield registry
    await registry.close()


@pytest.fixture
def oauth(registry, resolver, sessions, settings) -> OAuthFlowManager:
    return OAuthFlowManager(registry, resolver, sessions, settings)


def query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


class TestPkce:
    def test_rfc7636_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestBeginFlow:
    def test_google_web(self, oauth: OAuthFlowManager):
        start = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.WEB)
        params = query(start.authorization_url)

        assert start.authorization_url.startswith("https://accounts.google.com/")
        assert params["response_type"] == "code"
        assert params["client_id"] == "google-client-id"
        assert params["state"] == start.flow.state
        assert params["code_challenge"] == code_challenge_s256(start.flow.code_verifier)
        assert params["code_challenge_method"] == "S256"
        assert params["scope"] == "openid email profile"
        assert params["redirect_uri"] == "https://localhost:5173/auth/google/callback"
        assert 43 <= len(start.flow.code_verifier) <= 128

    def test_apple_uses_form_post(self, oauth: OAuthFlowManager):
        start = oauth.begin_flow("apple", Platform.WEB)
        params = query(start.authorization_url)

        assert params["response_mode"] == "form_post"
        assert params["scope"] == "openid email name"
        assert params["redirect_uri"] == "https://localhost:5173/auth/apple/callback"

    def test_mobile_redirects(self, oauth: OAuthFlowManager):
        default = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.IOS)
        assert default.flow.redirect_uri == "https://localhost:5173/api/auth/callback/google"

        deep_link = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.IOS, "myapp://oauth")
        assert query(deep_link.authorization_url)["redirect_uri"] == "myapp://oauth"

    def test_mobile_redirect_allow_list(self, oauth: OAuthFlowManager, settings):
        settings.oauth_mobile_redirect_prefixes = ["myapp://"]

        oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.ANDROID, "myapp://callback")
        with pytest.raises(InvalidRequest):
            oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.ANDROID, "https://evil.example/cb")

    def test_web_cannot_choose_redirect(self, oauth: OAuthFlowManager):
        with pytest.raises(InvalidRequest):
            oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.WEB, "https://evil.example/cb")

    def test_unsupported_provider(self, oauth: OAuthFlowManager):
        with pytest.raises(InvalidRequest):
            oauth.begin_flow("github", Platform.WEB)


class TestCompleteFlow:
    async def test_scenario_d_state_mismatch_makes_no_calls(self, oauth, token_endpoint, store):
        start = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.WEB)

        with pytest.raises(StateMismatch):
            await oauth.complete_flow(
                OAuthProviderName.GOOGLE,
                code="auth-code",
                state="s2",
                stored_state=start.flow.state,
                code_verifier=start.flow.code_verifier,
                platform=Platform.WEB,
            )

        assert token_endpoint.calls == 0
        assert await store.get_user_by_email("bob@example.com") is None

    async def test_missing_stored_state(self, oauth, token_endpoint):
        with pytest.raises(StateMismatch):
            await oauth.complete_flow(
                "google", code="c", state="s1", stored_state=None,
                code_verifier="v", platform=Platform.WEB,
            )
        assert token_endpoint.calls == 0

    async def test_web_login(self, oauth, token_endpoint):
        start = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.WEB)

        issued = await oauth.complete_flow(
            OAuthProviderName.GOOGLE,
            code="auth-code",
            state=start.flow.state,
            stored_state=start.flow.state,
            code_verifier=start.flow.code_verifier,
            platform=Platform.WEB,
        )

        assert token_endpoint.calls == 1
        form = token_endpoint.form()
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["code_verifier"] == start.flow.code_verifier
        assert form["client_secret"] == "google-client-secret"
        assert form["redirect_uri"] == "https://localhost:5173/auth/google/callback"

        assert issued.user.email == "bob@example.com"
        assert issued.user.name == "Bob Example"
        assert issued.user.last_login_platform == Platform.WEB
        assert issued.session_token
        assert issued.tokens is None

    async def test_mobile_login_gets_tokens(self, oauth, store):
        start = oauth.begin_flow(OAuthProviderName.GOOGLE, Platform.ANDROID, "myapp://oauth")

        issued = await oauth.complete_flow(
            OAuthProviderName.GOOGLE,
            code="auth-code",
            state=start.flow.state,
            stored_state=start.flow.state,
            code_verifier=start.flow.code_verifier,
            platform=Platform.ANDROID,
            redirect_uri="myapp://oauth",
        )

        assert issued.tokens is not None
        assert issued.session is None
        user = await store.get_user_by_provider("google", "google-sub-123")
        assert user.id == issued.user.id

    async def test_token_endpoint_error(self, oauth, token_endpoint, store):
        token_endpoint.status_code = 400

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="bad", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )
        assert await store.get_user_by_email("bob@example.com") is None

    async def test_transport_failure_is_not_retried(self, oauth, token_endpoint):
        token_endpoint.error = httpx.ConnectError("connection refused")

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )
        assert token_endpoint.calls == 1

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "someone-else"},
            {"iss": "https://evil.example"},
            {"exp": int(time.time()) - 10},
            {"email": None},
        ],
    )
    async def test_bad_id_token_claims(self, oauth, token_endpoint, store, overrides):
        token_endpoint.id_token = make_id_token(**overrides)

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )
        assert await store.get_user_by_provider("google", "google-sub-123") is None

    async def test_malformed_id_token(self, oauth, token_endpoint):
        token_endpoint.id_token = "not-a-jwt"

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )

    @pytest.mark.parametrize(
        "status_code, body",
        [
            (200, {"id_token": "x", "expires_in": "soon"}),
            (400, ["bad"]),
            (200, "just a string"),
        ],
    )
    async def test_unexpected_token_response(self, oauth, token_endpoint, store, status_code, body):
        token_endpoint.status_code = status_code
        token_endpoint.body = body

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )
        assert await store.get_user_by_email("bob@example.com") is None

    async def test_odd_claim_types(self, oauth, token_endpoint, store):
        token_endpoint.id_token = make_id_token(email=["a@b.c"])

        with pytest.raises(ProviderError):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier="v", platform=Platform.WEB,
            )
        assert await store.get_user_by_provider("google", "google-sub-123") is None

    async def test_missing_verifier(self, oauth, token_endpoint):
        with pytest.raises(InvalidRequest):
            await oauth.complete_flow(
                "google", code="c", state="s", stored_state="s",
                code_verifier=None, platform=Platform.WEB,
            )
        assert token_endpoint.calls == 0


class TestIdTokenSignature:
    async def complete(self, oauth):
        return await oauth.complete_flow(
            "google", code="c", state="s", stored_state="s",
            code_verifier="v", platform=Platform.WEB,
        )

    async def test_foreign_signature_is_rejected(self, oauth, token_endpoint, store):
        other_key = ec.generate_private_key(ec.SECP256R1())
        token_endpoint.id_token = make_id_token(signing_key=pem(other_key))

        with pytest.raises(ProviderError):
            await self.complete(oauth)
        assert await store.get_user_by_email("bob@example.com") is None

    async def test_key_set_is_cached(self, oauth, token_endpoint):
        await self.complete(oauth)
        await self.complete(oauth)

        assert token_endpoint.calls == 2
        assert len(token_endpoint.jwks_requests) == 1

    async def test_rotated_key_is_picked_up(self, oauth, token_endpoint):
        await self.complete(oauth)

        rotated = ec.generate_private_key(ec.SECP256R1())
        token_endpoint.jwks = {"keys": [jwk(rotated, "rotated-key")]}
        token_endpoint.id_token = make_id_token(signing_key=pem(rotated), kid="rotated-key")

        issued = await self.complete(oauth)

        assert issued.user.email == "bob@example.com"
        assert len(token_endpoint.jwks_requests) == 2

    async def test_key_set_unavailable(self, oauth, token_endpoint, store):
        token_endpoint.jwks_status_code = 500

        with pytest.raises(ProviderError):
            await self.complete(oauth)
        assert await store.get_user_by_email("bob@example.com") is None


class TestApple:
    async def test_first_login_name_comes_from_user_payload(self, oauth, token_endpoint):
        token_endpoint.id_token = make_id_token(
            iss="https://appleid.apple.com",
            aud="com.example.web",
            sub="apple-sub-1",
            email="relay@privaterelay.appleid.com",
            email_verified="true",
            name=None,
            picture=None,
        )

        issued = await oauth.complete_flow(
            OAuthProviderName.APPLE,
            code="c", state="s", stored_state="s", code_verifier="v",
            platform=Platform.WEB,
            user_payload={"name": {"firstName": "Ann", "lastName": "Apple"}},
        )

        assert issued.user.name == "Ann Apple"
        assert issued.user.picture is None

        # Later logins carry no name and must not erase it
        again = await oauth.complete_flow(
            OAuthProviderName.APPLE,
            code="c", state="s", stored_state="s", code_verifier="v",
            platform=Platform.WEB,
        )
        assert again.user.id == issued.user.id
        assert again.user.name == "Ann Apple"

    async def test_client_secret_is_signed_and_cached(self, registry, settings, apple_private_key):
        apple = registry.get(OAuthProviderName.APPLE)
        assert isinstance(apple, AppleProvider)

        secret = apple.client_credentials()["client_secret"]
        assert apple.client_credentials()["client_secret"] == secret

        header = jwt.get_unverified_header(secret)
        assert header["alg"] == "ES256"
        assert header["kid"] == "KEY1234567"

        public_pem = serialization.load_pem_private_key(
            apple_private_key.encode(), password=None,
        ).public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        claims = jwt.decode(
            secret, public_pem, algorithms=["ES256"], audience="https://appleid.apple.com",
        )
        assert claims["iss"] == "TEAM123456"
        assert claims["sub"] == "com.example.web"


class TestProviderRegistry:
    def test_providers_are_cached(self, registry):
        google = registry.get("google")
        assert isinstance(google, GoogleProvider)
        assert registry.get(OAuthProviderName.GOOGLE) is google

        registry.invalidate(OAuthProviderName.GOOGLE)
        assert registry.get("google") is not google

    async def test_unconfigured_provider(self, settings):
        settings.google_client_secret = None
        registry = ProviderRegistry(settings, TTLCache(max_age=60))

        with pytest.raises(InternalError):
            registry.get("google")
        await registry.close()


def test_apple_user_payload_parsing():
    assert parse_apple_user(json.dumps({"name": {"firstName": "Ann"}})) == {"name": {"firstName": "Ann"}}
    assert parse_apple_user("{not json") is None
    assert parse_apple_user(None) is None
