# (c) Copyright Datacraft, 2026
"""OAuth2/OIDC providers: Google and Sign in with Apple."""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from jose import jwt, JWTError
from jose.exceptions import ExpiredSignatureError
from pydantic import BaseModel, ValidationError

from auth_gateway.cache import TTLCache
from auth_gateway.config import Settings
from auth_gateway.exceptions import InternalError, InvalidRequest, ProviderError
from auth_gateway.schema import IdentityClaims, OAuthProviderName

logger = logging.getLogger(__name__)

ID_TOKEN_ALGORITHMS = ["RS256", "ES256"]


class ProviderTokens(BaseModel):
	"""Token endpoint response."""
	access_token: str | None = None
	id_token: str | None = None
	refresh_token: str | None = None
	token_type: str | None = None
	expires_in: int | None = None


class OAuthProvider(ABC):
	"""Authorization-code-with-PKCE client for one provider."""

	name: OAuthProviderName
	authorization_endpoint: str
	token_endpoint: str
	jwks_uri: str
	issuers: tuple[str, ...]
	scopes: tuple[str, ...]

	def __init__(self, client_id: str, http_client: httpx.AsyncClient, cache: TTLCache):
		self.client_id = client_id
		self.http_client = http_client
		self.cache = cache

	def authorization_params(self) -> dict[str, str]:
		"""Extra query parameters for the authorization URL."""
		return {}

	@abstractmethod
	def client_credentials(self) -> dict[str, str]:
		"""Form fields that authenticate the client at the token endpoint."""

	def build_authorization_url(
		self,
		state: str,
		code_challenge: str,
		redirect_uri: str,
	) -> str:
		params = {
			"response_type": "code",
			"client_id": self.client_id,
			"redirect_uri": redirect_uri,
			"scope": " ".join(self.scopes),
			"state": state,
			"code_challenge": code_challenge,
			"code_challenge_method": "S256",
		}
		params.update(self.authorization_params())
		return f"{self.authorization_endpoint}?{urlencode(params)}"

	async def exchange_code(
		self,
		code: str,
		code_verifier: str,
		redirect_uri: str,
	) -> ProviderTokens:
		"""Exchange the authorization code once; never retried."""
		data = {
			"grant_type": "authorization_code",
			"code": code,
			"redirect_uri": redirect_uri,
			"client_id": self.client_id,
			"code_verifier": code_verifier,
		}
		data.update(self.client_credentials())

		try:
			response = await self.http_client.post(
				self.token_endpoint,
				data=data,
				headers={"Accept": "application/json"},
			)
		except httpx.HTTPError as e:
			logger.error(f"{self.name.value} token request failed: {e}")
			raise ProviderError(f"Token request failed: {e}") from e

		try:
			payload = response.json()
		except ValueError as e:
			raise ProviderError(
				f"Token endpoint returned non-JSON ({response.status_code})"
			) from e
		if not isinstance(payload, dict):
			raise ProviderError(
				f"Token endpoint returned a {type(payload).__name__} ({response.status_code})"
			)

		if response.status_code != 200:
			error_msg = payload.get("error_description", payload.get("error", "Unknown error"))
			logger.error(f"{self.name.value} token exchange failed: {error_msg}")
			raise ProviderError(f"Token exchange failed: {error_msg}")

		try:
			tokens = ProviderTokens.model_validate(payload)
		except ValidationError as e:
			raise ProviderError(f"Malformed token response: {e}") from e
		if not tokens.id_token:
			raise ProviderError(f"No ID token received from {self.name.value}")
		return tokens

	async def get_jwks(self, kid: str | None = None) -> dict[str, Any]:
		"""Provider signing keys, kept in the shared cache.

		An unknown ``kid`` means the provider rotated its keys, so the cached
		set is dropped and fetched again.
		"""
		cache_key = f"jwks:{self.name.value}"
		jwks = self.cache.get(cache_key)
		if jwks is not None and (kid is None or _has_key(jwks, kid)):
			return jwks

		try:
			response = await self.http_client.get(
				self.jwks_uri, headers={"Accept": "application/json"},
			)
			response.raise_for_status()
			jwks = response.json()
		except (httpx.HTTPError, ValueError) as e:
			logger.error(f"Failed to fetch {self.name.value} JWKS: {e}")
			raise ProviderError(f"Failed to fetch JWKS: {e}") from e

		if not isinstance(jwks, dict) or not jwks.get("keys"):
			raise ProviderError(f"{self.name.value} returned no signing keys")
		self.cache.set(cache_key, jwks)
		return jwks

	async def parse_identity_claims(
		self,
		tokens: ProviderTokens,
		user_payload: dict[str, Any] | None = None,
	) -> IdentityClaims:
		"""Validate the ID token and read the identity out of it."""
		id_token = tokens.id_token or ""
		try:
			header = jwt.get_unverified_header(id_token)
		except JWTError as e:
			raise ProviderError(f"Malformed ID token: {e}") from e

		jwks = await self.get_jwks(header.get("kid"))
		try:
			claims = jwt.decode(
				id_token,
				jwks,
				algorithms=ID_TOKEN_ALGORITHMS,
				audience=self.client_id,
				issuer=self.issuers,
				options={
					"verify_at_hash": False,  # Not always present
				},
			)
		except ExpiredSignatureError as e:
			raise ProviderError("ID token expired") from e
		except JWTError as e:
			raise ProviderError(f"Invalid ID token: {e}") from e

		subject = claims.get("sub")
		email = claims.get("email")
		if not subject or not email:
			raise ProviderError("ID token is missing subject or email")

		try:
			return IdentityClaims(
				provider=self.name,
				subject=subject,
				email=email,
				email_verified=_as_bool(claims.get("email_verified")),
				name=self.display_name(claims, user_payload),
				picture=claims.get("picture"),
			)
		except ValidationError as e:
			raise ProviderError(f"Unexpected ID token claims: {e}") from e

	def display_name(
		self,
		claims: dict[str, Any],
		user_payload: dict[str, Any] | None,
	) -> str | None:
		return claims.get("name")


class GoogleProvider(OAuthProvider):
	name = OAuthProviderName.GOOGLE
	authorization_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
	token_endpoint = "https://oauth2.googleapis.com/token"
	jwks_uri = "https://www.googleapis.com/oauth2/v3/certs"
	issuers = ("https://accounts.google.com", "accounts.google.com")
	scopes = ("openid", "email", "profile")

	def __init__(
		self,
		client_id: str,
		client_secret: str,
		http_client: httpx.AsyncClient,
		cache: TTLCache,
	):
		super().__init__(client_id, http_client, cache)
		self.client_secret = client_secret

	def client_credentials(self) -> dict[str, str]:
		return {"client_secret": self.client_secret}


class AppleProvider(OAuthProvider):
	"""Sign in with Apple.

	Apple posts the callback (``response_mode=form_post``), sends the user's
	name only on the very first login and never a picture. The client secret
	is a short-lived ES256 JWT signed with the team's key.
	"""

	name = OAuthProviderName.APPLE
	authorization_endpoint = "https://appleid.apple.com/auth/authorize"
	token_endpoint = "https://appleid.apple.com/auth/token"
	jwks_uri = "https://appleid.apple.com/auth/keys"
	issuers = ("https://appleid.apple.com",)
	scopes = ("openid", "email", "name")

	def __init__(
		self,
		client_id: str,
		team_id: str,
		key_id: str,
		private_key: str,
		http_client: httpx.AsyncClient,
		cache: TTLCache,
	):
		super().__init__(client_id, http_client, cache)
		self.team_id = team_id
		self.key_id = key_id
		self.private_key = private_key

	def authorization_params(self) -> dict[str, str]:
		return {"response_mode": "form_post"}

	def client_credentials(self) -> dict[str, str]:
		secret = self.cache.get_or_create(
			f"apple:client_secret:{self.client_id}", self.create_client_secret,
		)
		return {"client_secret": secret}

	def create_client_secret(self) -> str:
		# Outlive the cache entry so a cached secret is never stale
		now = datetime.now(timezone.utc)
		lifetime = self.cache.max_age + timedelta(minutes=5)
		claims = {
			"iss": self.team_id,
			"iat": int(now.timestamp()),
			"exp": int((now + lifetime).timestamp()),
			"aud": "https://appleid.apple.com",
			"sub": self.client_id,
		}
		try:
			return jwt.encode(
				claims,
				self.private_key,
				algorithm="ES256",
				headers={"kid": self.key_id},
			)
		except JWTError as e:
			logger.error(f"Could not sign Apple client secret: {e}")
			raise InternalError(f"Apple client secret signing failed: {e}") from e

	def display_name(
		self,
		claims: dict[str, Any],
		user_payload: dict[str, Any] | None,
	) -> str | None:
		name = (user_payload or {}).get("name")
		if isinstance(name, dict):
			full = " ".join(
				part for part in (name.get("firstName"), name.get("lastName")) if part
			)
			return full or None
		return claims.get("name")


class ProviderRegistry:
	"""Builds providers from settings and keeps them in the injected cache."""

	def __init__(
		self,
		settings: Settings,
		cache: TTLCache,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		self.settings = settings
		self.cache = cache
		self.http_client = httpx.AsyncClient(
			timeout=settings.oauth_provider_timeout,
			transport=transport,
		)

	def get(self, name: OAuthProviderName | str) -> OAuthProvider:
		try:
			provider_name = OAuthProviderName(name)
		except ValueError:
			raise InvalidRequest("Unsupported OAuth provider")
		return self.cache.get_or_create(
			f"provider:{provider_name.value}",
			lambda: self._build(provider_name),
		)

	def invalidate(self, name: OAuthProviderName) -> None:
		self.cache.invalidate(f"provider:{name.value}")

	async def close(self) -> None:
		await self.http_client.aclose()

	def _build(self, name: OAuthProviderName) -> OAuthProvider:
		s = self.settings
		if name == OAuthProviderName.GOOGLE:
			if not s.google_client_id or not s.google_client_secret:
				raise InternalError("Google OAuth credentials not configured")
			return GoogleProvider(
				s.google_client_id, s.google_client_secret, self.http_client, self.cache,
			)

		if not (s.apple_client_id and s.apple_team_id and s.apple_key_id and s.apple_private_key):
			raise InternalError("Apple OAuth credentials not configured")
		return AppleProvider(
			client_id=s.apple_client_id,
			team_id=s.apple_team_id,
			key_id=s.apple_key_id,
			private_key=s.apple_private_key,
			http_client=self.http_client,
			cache=self.cache,
		)


def _has_key(jwks: dict[str, Any], kid: str) -> bool:
	return any(key.get("kid") == kid for key in jwks.get("keys", []))


def _as_bool(value: Any) -> bool:
	# Apple sends "true"/"false" strings
	if isinstance(value, str):
		return value.lower() == "true"
	return bool(value)


def parse_apple_user(raw: str | None) -> dict[str, Any] | None:
	"""Decode the ``user`` form field Apple posts on first login."""
	if not raw:
		return None
	try:
		data = json.loads(raw)
	except ValueError:
		logger.warning("Ignoring malformed Apple user payload")
		return None
	return data if isinstance(data, dict) else None
