# (c) Copyright Datacraft, 2026
"""Session cookies for the web and bearer token pairs for everything else."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from uuid_extensions import uuid7str

from auth_gateway.config import Settings
from auth_gateway.exceptions import (
	IdentityStoreError,
	InvalidOrExpired,
	InvalidRequest,
	SessionExpired,
	SessionNotFound,
)
from auth_gateway.schema import (
	IssuedCredentials,
	Platform,
	Session,
	TokenPair,
	TokenRecord,
	User,
)
from auth_gateway.store import IdentityStore
from auth_gateway.utils import generate_session_token, generate_token, hash_token

logger = logging.getLogger(__name__)


def session_id_for(token: str) -> str:
	"""The server only ever sees the hash of a session token."""
	return hash_token(token)


@dataclass
class SessionService:
	"""Issues, validates, refreshes and revokes sessions and tokens."""

	store: IdentityStore
	session_ttl: timedelta = timedelta(days=30)
	access_token_ttl: timedelta = timedelta(hours=1)
	refresh_token_ttl: timedelta = timedelta(days=30)
	rotate_refresh_tokens: bool = True

	@classmethod
	def from_settings(cls, store: IdentityStore, settings: Settings) -> "SessionService":
		return cls(
			store=store,
			session_ttl=timedelta(days=settings.session_ttl_days),
			access_token_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
			refresh_token_ttl=timedelta(days=settings.refresh_token_ttl_days),
			rotate_refresh_tokens=settings.refresh_token_rotation,
		)

	async def issue_for_platform(
		self,
		user: User,
		platform: Platform,
		user_agent: str | None = None,
	) -> IssuedCredentials:
		"""Session cookie for the web, token pair for bearer platforms."""
		if platform == Platform.WEB:
			token, session = await self.create_session(user.id, platform, user_agent)
			return IssuedCredentials(
				user=user, platform=platform, session_token=token, session=session,
			)
		tokens = await self.create_token_pair(user.id, platform, user_agent)
		return IssuedCredentials(user=user, platform=platform, tokens=tokens)

	# Sessions

	async def create_session(
		self,
		user_id: str,
		platform: Platform = Platform.WEB,
		user_agent: str | None = None,
	) -> tuple[str, Session]:
		"""Return the cookie value and the stored session."""
		token = generate_session_token()
		now = datetime.now(timezone.utc)
		session = await self.store.create_session(Session(
			id=session_id_for(token),
			user_id=user_id,
			platform=platform,
			user_agent=user_agent,
			expires_at=now + self.session_ttl,
			created_at=now,
		))
		logger.info(f"Session created for user {user_id} ({platform.value})")
		return token, session

	async def validate_session(self, token: str) -> tuple[User, Session]:
		if not token:
			raise SessionNotFound()
		session = await self.store.get_session(session_id_for(token))
		if session is None:
			raise SessionNotFound()
		if session.expires_at <= datetime.now(timezone.utc):
			await self.store.delete_session(session.id)
			raise SessionExpired()
		user = await self.store.get_user(session.user_id)
		if user is None:
			raise SessionNotFound()
		return user, session

	async def exchange_session(
		self,
		token: str,
		platform: Platform,
		user_agent: str | None = None,
	) -> IssuedCredentials:
		"""Trade a web session for a bearer token pair.

		Lets a native app that finished sign-in in a web view switch to
		tokens. The session itself stays valid.
		"""
		if platform == Platform.WEB:
			raise InvalidRequest("Token exchange is for ios, android and api clients")
		user, _ = await self.validate_session(token)

		now = datetime.now(timezone.utc)
		user.last_login_platform = platform
		user.last_login_at = now
		user.updated_at = now
		user = await self.store.update_user(user)

		tokens = await self.create_token_pair(user.id, platform, user_agent)
		logger.info(f"Session exchanged for token pair {tokens.token_id} (user {user.id})")
		return IssuedCredentials(user=user, platform=platform, tokens=tokens)

	async def invalidate_session(self, session_id: str) -> bool:
		return await self.store.delete_session(session_id)

	async def revoke_all_for_user(self, user_id: str) -> int:
		sessions = await self.store.delete_user_sessions(user_id)
		tokens = await self.store.revoke_user_tokens(user_id)
		logger.info(f"Revoked {sessions} sessions and {tokens} token pairs for user {user_id}")
		return sessions + tokens

	# Bearer tokens

	async def create_token_pair(
		self,
		user_id: str,
		platform: Platform,
		user_agent: str | None = None,
	) -> TokenPair:
		access_token = generate_token()
		refresh_token = generate_token()
		now = datetime.now(timezone.utc)
		record = await self.store.create_token_record(TokenRecord(
			id=uuid7str(),
			user_id=user_id,
			access_token_hash=hash_token(access_token),
			refresh_token_hash=hash_token(refresh_token),
			access_expires_at=now + self.access_token_ttl,
			refresh_expires_at=now + self.refresh_token_ttl,
			platform=platform,
			user_agent=user_agent,
			created_at=now,
		))
		logger.info(f"Token pair {record.id} issued for user {user_id} ({platform.value})")
		return TokenPair(
			token_id=record.id,
			user_id=user_id,
			platform=platform,
			access_token=access_token,
			access_expires_at=record.access_expires_at,
			refresh_token=refresh_token,
			refresh_expires_at=record.refresh_expires_at,
		)

	async def validate_access_token(self, token: str) -> tuple[User, TokenRecord]:
		if not token:
			raise InvalidOrExpired()
		record = await self.store.get_token_by_access_hash(hash_token(token))
		if record is None or record.revoked:
			raise InvalidOrExpired()
		if record.access_expires_at <= datetime.now(timezone.utc):
			raise InvalidOrExpired("Access token expired")
		user = await self.store.get_user(record.user_id)
		if user is None:
			raise InvalidOrExpired()
		return user, record

	async def refresh_access_token(self, refresh_token: str) -> TokenPair:
		"""Exchange a refresh token for a new pair.

		With rotation on, the old pair is revoked in the same store call that
		reads it, so a refresh token works once. Any doubt fails closed.
		"""
		if not refresh_token:
			raise InvalidOrExpired()
		refresh_hash = hash_token(refresh_token)
		try:
			if self.rotate_refresh_tokens:
				record = await self.store.exchange_refresh_token(refresh_hash)
			else:
				record = await self.store.get_token_by_refresh_hash(refresh_hash)
		except IdentityStoreError as e:
			logger.error(f"Refresh token lookup failed: {e}")
			raise InvalidOrExpired() from e

		if record is None or (record.revoked and not self.rotate_refresh_tokens):
			logger.warning("Rejected unknown, revoked or reused refresh token")
			raise InvalidOrExpired()
		if record.refresh_expires_at <= datetime.now(timezone.utc):
			raise InvalidOrExpired("Refresh token expired")

		return await self.create_token_pair(record.user_id, record.platform, record.user_agent)

	async def revoke_token(self, token_id: str) -> bool:
		return await self.store.revoke_token(token_id)
