"""Small helpers shared by the HTTP-level tests."""

import time
from typing import Any
from urllib.parse import parse_qs

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from webauthn.helpers import bytes_to_base64url


def set_cookies(response: httpx.Response) -> dict[str, str]:
    """Cookies set by a response, read straight from its headers."""
    cookies = {}
    for header in response.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        value = rest.split(";", 1)[0].strip('"')
        cookies[name.strip()] = value
    return cookies


def cookie_header(cookies: dict[str, str]) -> dict[str, str]:
    return {"Cookie": "; ".join(f"{name}={value}" for name, value in cookies.items())}


PROVIDER_KEY_ID = "provider-key-1"
JWKS_URIS = (
    "https://www.googleapis.com/oauth2/v3/certs",
    "https://appleid.apple.com/auth/keys",
)


def pem(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def jwk(private_key: ec.EllipticCurvePrivateKey, kid: str) -> dict[str, str]:
    numbers = private_key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "alg": "ES256",
        "use": "sig",
        "kid": kid,
        "x": bytes_to_base64url(numbers.x.to_bytes(32, "big")),
        "y": bytes_to_base64url(numbers.y.to_bytes(32, "big")),
    }


_provider_key = ec.generate_private_key(ec.SECP256R1())
PROVIDER_SIGNING_KEY = pem(_provider_key)


def make_id_token(signing_key: str | None = None, kid: str = PROVIDER_KEY_ID, **overrides) -> str:
    """An ID token as Google would return it, signed with the fake provider key."""
    claims = {
        "iss": "https://accounts.google.com",
        "aud": "google-client-id",
        "sub": "google-sub-123",
        "email": "bob@example.com",
        "email_verified": True,
        "name": "Bob Example",
        "picture": "https://img.example/bob.png",
        "iat": int(time.time()),
        "exp": int(time.time()) + 600,
    }
    claims.update(overrides)
    return jwt.encode(
        claims,
        signing_key or PROVIDER_SIGNING_KEY,
        algorithm="ES256",
        headers={"kid": kid},
    )


class FakeTokenEndpoint:
    """Stands in for a provider: answers token requests and serves its JWKS.

    ``requests`` records token requests only; key set fetches are counted
    in ``jwks_requests``.
    """

    def __init__(self, status_code: int = 200, id_token: str | None = None, error: Exception | None = None):
        self.status_code = status_code
        self.id_token = id_token if id_token is not None else make_id_token()
        self.error = error
        # Raw JSON body to answer with instead of the usual token response
        self.body: Any = None
        self.jwks: dict[str, Any] = {"keys": [jwk(_provider_key, PROVIDER_KEY_ID)]}
        self.jwks_status_code = 200
        self.requests: list[httpx.Request] = []
        self.jwks_requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict[str, str]:
        body = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in body.items()}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and str(request.url) in JWKS_URIS:
            self.jwks_requests.append(request)
            return httpx.Response(self.jwks_status_code, json=self.jwks)

        self.requests.append(request)
        if self.error:
            raise self.error
        if self.body is not None:
            return httpx.Response(self.status_code, json=self.body)
        if self.status_code != 200:
            return httpx.Response(
                self.status_code,
                json={"error": "invalid_grant", "error_description": "Bad code"},
            )
        return httpx.Response(
            200,
            json={
                "access_token": "provider-access",
                "id_token": self.id_token,
                "token_type": "Bearer",
                "expires_in": 3600,
            },
        )
