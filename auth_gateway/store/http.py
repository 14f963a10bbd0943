# (c) Copyright Datacraft, 2026
"""Identity store reached over the internal identity API."""
import logging
import uuid
from datetime import datetime
from typing import Any

import httpx

from auth_gateway.exceptions import IdentityStoreError
from auth_gateway.schema import (
	Challenge,
	Credential,
	ProviderIdentity,
	Session,
	TokenRecord,
	User,
)

from .base import IdentityStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "auth-gateway"


class HttpIdentityStore(IdentityStore):
	"""Identity store client for the internal identity API.

	Reads are idempotent and retried once on a transport failure. Writes
	are sent exactly once so that a timeout never turns into a duplicate
	user or a second counter update.
	"""

	def __init__(
		self,
		base_url: str,
		token: str | None = None,
		timeout: float = 5.0,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		headers = {"x-service-name": SERVICE_NAME}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		self._client = httpx.AsyncClient(
			base_url=base_url.rstrip("/"),
			headers=headers,
			timeout=timeout,
			transport=transport,
		)

	async def close(self) -> None:
		await self._client.aclose()

	async def _request(
		self,
		method: str,
		path: str,
		json: Any = None,
		idempotent: bool = False,
	) -> httpx.Response:
		if idempotent:
			try:
				return await self._send(method, path, json)
			except httpx.TransportError as e:
				logger.warning(f"Identity store {method} {path} failed, retrying: {e}")

		try:
			return await self._send(method, path, json)
		except httpx.TransportError as e:
			logger.error(f"Identity store {method} {path} failed: {e}")
			raise IdentityStoreError(f"Identity store unreachable: {e}") from e

	async def _send(self, method: str, path: str, json: Any) -> httpx.Response:
		return await self._client.request(
			method,
			path,
			json=json,
			headers={"x-request-id": str(uuid.uuid4())},
		)

	def _check(self, response: httpx.Response) -> dict[str, Any]:
		if response.is_error:
			try:
				payload = response.json()
			except ValueError:
				payload = {}
			if not isinstance(payload, dict):
				payload = {}
			message = payload.get("error") or payload.get("message") or f"API error: {response.status_code}"
			raise IdentityStoreError(message)
		if not response.content:
			return {}
		try:
			payload = response.json()
		except ValueError as e:
			raise IdentityStoreError(f"Identity store returned non-JSON ({response.status_code})") from e
		if not isinstance(payload, dict):
			raise IdentityStoreError(
				f"Identity store returned a {type(payload).__name__} ({response.status_code})"
			)
		return payload

	async def _get(self, path: str, key: str) -> dict[str, Any] | None:
		response = await self._request("GET", path, idempotent=True)
		if response.status_code == 404:
			return None
		return self._check(response).get(key)

	async def _write(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
		return self._check(await self._request(method, path, json=body))

	async def _delete(self, path: str) -> httpx.Response:
		return await self._request("DELETE", path)

	# Users

	async def create_user(self, user: User) -> User:
		data = await self._write("POST", "/api/internal/users", user.model_dump(mode="json"))
		return User.model_validate(data["user"])

	async def get_user(self, user_id: str) -> User | None:
		data = await self._get(f"/api/internal/users/{user_id}", "user")
		return User.model_validate(data) if data else None

	async def get_user_by_email(self, email: str) -> User | None:
		response = await self._request(
			"POST", "/api/internal/users/by-email", json={"email": email}, idempotent=True,
		)
		if response.status_code == 404:
			return None
		data = self._check(response).get("user")
		return User.model_validate(data) if data else None

	async def get_user_by_provider(self, provider: str, provider_id: str) -> User | None:
		data = await self._get(f"/api/internal/identities/{provider}/{provider_id}", "user")
		return User.model_validate(data) if data else None

	async def update_user(self, user: User) -> User:
		data = await self._write(
			"PATCH", f"/api/internal/users/{user.id}", user.model_dump(mode="json", exclude={"identities"}),
		)
		return User.model_validate(data["user"])

	async def link_identity(self, user_id: str, identity: ProviderIdentity) -> None:
		await self._write(
			"POST", f"/api/internal/users/{user_id}/identities", identity.model_dump(mode="json"),
		)

	async def delete_user(self, user_id: str) -> bool:
		response = await self._delete(f"/api/internal/users/{user_id}")
		if response.status_code == 404:
			return False
		self._check(response)
		return True

	# WebAuthn credentials

	async def create_credential(self, credential: Credential) -> Credential:
		data = await self._write("POST", "/api/webauthn/credentials", credential.model_dump(mode="json"))
		return Credential.model_validate(data.get("credential") or credential.model_dump())

	async def get_credential(self, credential_id: str) -> Credential | None:
		data = await self._get(f"/api/webauthn/credentials/{credential_id}", "credential")
		return Credential.model_validate(data) if data else None

	async def update_credential_counter(
		self,
		credential_id: str,
		expected_counter: int,
		counter: int,
		last_used: datetime,
	) -> bool:
		response = await self._request(
			"PATCH",
			f"/api/webauthn/credentials/{credential_id}/counter",
			json={
				"expected_counter": expected_counter,
				"counter": counter,
				"last_used": last_used.isoformat(),
			},
		)
		if response.status_code in (404, 409):
			return False
		self._check(response)
		return True

	async def list_credentials(self, user_id: str) -> list[Credential]:
		response = await self._request(
			"GET", f"/api/webauthn/users/{user_id}/credentials", idempotent=True,
		)
		if response.status_code == 404:
			return []
		data = self._check(response)
		return [Credential.model_validate(c) for c in data.get("credentials", [])]

	async def delete_credential(self, credential_id: str) -> bool:
		response = await self._delete(f"/api/webauthn/credentials/{credential_id}")
		if response.status_code == 404:
			return False
		self._check(response)
		return True

	async def rename_credential(self, credential_id: str, name: str) -> bool:
		response = await self._request(
			"PATCH", f"/api/webauthn/credentials/{credential_id}/name", json={"name": name},
		)
		if response.status_code == 404:
			return False
		self._check(response)
		return True

	# Challenges

	async def create_challenge(self, challenge: Challenge) -> Challenge:
		await self._write("POST", "/api/webauthn/challenges", challenge.model_dump(mode="json"))
		return challenge

	async def get_challenge(self, challenge_id: str) -> Challenge | None:
		data = await self._get(f"/api/webauthn/challenges/{challenge_id}", "challenge")
		return Challenge.model_validate(data) if data else None

	async def delete_challenge(self, challenge_id: str) -> Challenge | None:
		# The API deletes and returns the row in one statement; 404 means
		# someone else already consumed it.
		response = await self._delete(f"/api/webauthn/challenges/{challenge_id}")
		if response.status_code == 404:
			return None
		data = self._check(response).get("challenge")
		return Challenge.model_validate(data) if data else None

	# Sessions

	async def create_session(self, session: Session) -> Session:
		await self._write("POST", "/api/internal/sessions", session.model_dump(mode="json"))
		return session

	async def get_session(self, session_id: str) -> Session | None:
		data = await self._get(f"/api/internal/sessions/{session_id}", "session")
		return Session.model_validate(data) if data else None

	async def delete_session(self, session_id: str) -> bool:
		response = await self._delete(f"/api/internal/sessions/{session_id}")
		if response.status_code == 404:
			return False
		self._check(response)
		return True

	async def delete_user_sessions(self, user_id: str) -> int:
		data = self._check(await self._delete(f"/api/internal/users/{user_id}/sessions"))
		return int(data.get("deleted", 0))

	# Bearer tokens

	async def create_token_record(self, record: TokenRecord) -> TokenRecord:
		await self._write("POST", "/api/internal/tokens", record.model_dump(mode="json"))
		return record

	async def get_token_by_access_hash(self, access_hash: str) -> TokenRecord | None:
		data = await self._get(f"/api/internal/tokens/access/{access_hash}", "token")
		return TokenRecord.model_validate(data) if data else None

	async def get_token_by_refresh_hash(self, refresh_hash: str) -> TokenRecord | None:
		data = await self._get(f"/api/internal/tokens/refresh/{refresh_hash}", "token")
		return TokenRecord.model_validate(data) if data else None

	async def exchange_refresh_token(self, refresh_hash: str) -> TokenRecord | None:
		response = await self._request(
			"POST", "/api/internal/tokens/refresh", json={"refresh_token_hash": refresh_hash},
		)
		if response.status_code in (404, 409):
			return None
		data = self._check(response).get("token")
		return TokenRecord.model_validate(data) if data else None

	async def revoke_token(self, token_id: str) -> bool:
		response = await self._delete(f"/api/internal/tokens/{token_id}")
		if response.status_code == 404:
			return False
		self._check(response)
		return True

	async def revoke_user_tokens(self, user_id: str) -> int:
		data = self._check(await self._delete(f"/api/internal/users/{user_id}/tokens"))
		return int(data.get("revoked", 0))
