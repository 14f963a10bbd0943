# (c) Copyright Datacraft, 2026
"""Identity store contract.

The identity store owns users, credentials, challenges, sessions and token
records. Ceremony and flow code only ever talks to it through this
interface, so the backing service can be a remote API or a local database.
Failures surface as ``IdentityStoreError``; "not found" is ``None``.
"""
from abc import ABC, abstractmethod
from datetime import datetime

from auth_gateway.schema import (
	Challenge,
	Credential,
	ProviderIdentity,
	Session,
	TokenRecord,
	User,
)


class IdentityStore(ABC):

	# Users

	@abstractmethod
	async def create_user(self, user: User) -> User:
		...

	@abstractmethod
	async def get_user(self, user_id: str) -> User | None:
		...

	@abstractmethod
	async def get_user_by_email(self, email: str) -> User | None:
		"""Lookup by normalised email."""

	@abstractmethod
	async def get_user_by_provider(self, provider: str, provider_id: str) -> User | None:
		...

	@abstractmethod
	async def update_user(self, user: User) -> User:
		"""Persist profile fields, login tracking and linked identities."""

	@abstractmethod
	async def link_identity(self, user_id: str, identity: ProviderIdentity) -> None:
		...

	@abstractmethod
	async def delete_user(self, user_id: str) -> bool:
		"""Remove a user and everything linked to it. False if it did not exist."""

	# WebAuthn credentials

	@abstractmethod
	async def create_credential(self, credential: Credential) -> Credential:
		...

	@abstractmethod
	async def get_credential(self, credential_id: str) -> Credential | None:
		...

	@abstractmethod
	async def update_credential_counter(
		self,
		credential_id: str,
		expected_counter: int,
		counter: int,
		last_used: datetime,
	) -> bool:
		"""Set the counter only if it still equals ``expected_counter``.

		Returns False when another authentication got there first.
		"""

	@abstractmethod
	async def list_credentials(self, user_id: str) -> list[Credential]:
		...

	@abstractmethod
	async def delete_credential(self, credential_id: str) -> bool:
		...

	@abstractmethod
	async def rename_credential(self, credential_id: str, name: str) -> bool:
		...

	# Challenges

	@abstractmethod
	async def create_challenge(self, challenge: Challenge) -> Challenge:
		...

	@abstractmethod
	async def get_challenge(self, challenge_id: str) -> Challenge | None:
		...

	@abstractmethod
	async def delete_challenge(self, challenge_id: str) -> Challenge | None:
		"""Atomically fetch and delete.

		Of any number of concurrent callers at most one receives the
		challenge, everybody else gets None.
		"""

	# Sessions

	@abstractmethod
	async def create_session(self, session: Session) -> Session:
		...

	@abstractmethod
	async def get_session(self, session_id: str) -> Session | None:
		...

	@abstractmethod
	async def delete_session(self, session_id: str) -> bool:
		...

	@abstractmethod
	async def delete_user_sessions(self, user_id: str) -> int:
		...

	# Bearer tokens

	@abstractmethod
	async def create_token_record(self, record: TokenRecord) -> TokenRecord:
		...

	@abstractmethod
	async def get_token_by_access_hash(self, access_hash: str) -> TokenRecord | None:
		...

	@abstractmethod
	async def get_token_by_refresh_hash(self, refresh_hash: str) -> TokenRecord | None:
		...

	@abstractmethod
	async def exchange_refresh_token(self, refresh_hash: str) -> TokenRecord | None:
		"""Atomically revoke the pair holding ``refresh_hash`` if still active.

		Returns the record as it was before revocation, or None when it is
		unknown or was already revoked.
		"""

	@abstractmethod
	async def revoke_token(self, token_id: str) -> bool:
		...

	@abstractmethod
	async def revoke_user_tokens(self, user_id: str) -> int:
		...

	async def close(self) -> None:
		"""Release connections held by the backend."""
