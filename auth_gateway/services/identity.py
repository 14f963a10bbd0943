# (c) Copyright Datacraft, 2026
"""Find-or-create users across login providers."""
import logging
from datetime import datetime, timezone

from uuid_extensions import uuid7str

from auth_gateway.exceptions import InvalidRequest
from auth_gateway.schema import Platform, ProviderIdentity, User
from auth_gateway.store import IdentityStore
from auth_gateway.utils import normalize_email

logger = logging.getLogger(__name__)


class IdentityResolver:
	"""Maps provider logins onto one account per email address."""

	def __init__(self, store: IdentityStore):
		self.store = store

	async def find_or_create(
		self,
		email: str,
		name: str | None,
		picture: str | None,
		provider: str,
		provider_id: str,
	) -> User:
		"""Resolve the user for a provider login.

		Lookup order is (provider, provider_id), then normalised email, then
		a new user. Incoming empty values never overwrite stored ones, which
		matters for providers that only send the profile on first login.
		"""
		if not email or not provider_id:
			raise InvalidRequest("email and provider id are required")
		email = normalize_email(email)

		user = await self.store.get_user_by_provider(provider, provider_id)
		if user is None:
			user = await self.store.get_user_by_email(email)
			if user is not None:
				identity = ProviderIdentity(provider=provider, provider_id=provider_id)
				await self.store.link_identity(user.id, identity)
				user.identities.append(identity)
				logger.info(f"Linked {provider} login to existing user {user.id}")

		if user is None:
			now = datetime.now(timezone.utc)
			user = await self.store.create_user(User(
				id=uuid7str(),
				email=email,
				name=name or email.split("@")[0],
				picture=picture or None,
				identities=[ProviderIdentity(provider=provider, provider_id=provider_id, linked_at=now)],
				created_at=now,
				updated_at=now,
			))
			logger.info(f"Created user {user.id} via {provider}")
			return user

		return await self._merge_profile(user, name=name, picture=picture)

	async def register_new(self, user_id: str, email: str, name: str | None) -> User:
		"""Create an account that has no provider login (passkey sign-up)."""
		email = normalize_email(email)
		if await self.store.get_user_by_email(email) is not None:
			raise InvalidRequest("An account already exists for this email, sign in to add a passkey")
		now = datetime.now(timezone.utc)
		user = await self.store.create_user(User(
			id=user_id,
			email=email,
			name=name or email.split("@")[0],
			created_at=now,
			updated_at=now,
		))
		logger.info(f"Created user {user.id} via passkey sign-up")
		return user

	async def record_login(self, user: User, platform: Platform) -> User:
		now = datetime.now(timezone.utc)
		user.last_login_platform = platform
		user.last_login_at = now
		user.updated_at = now
		return await self.store.update_user(user)

	async def update_profile(self, user: User, name: str, picture: str | None = None) -> User:
		"""Change the display name and, optionally, the picture."""
		name = (name or "").strip()
		if not name:
			raise InvalidRequest("Name is required")
		if picture is not None:
			picture = picture.strip()
			if not picture:
				raise InvalidRequest("Picture must be a non-empty URL")
			user.picture = picture
		user.name = name
		user.updated_at = datetime.now(timezone.utc)
		user = await self.store.update_user(user)
		logger.info(f"Profile updated for user {user.id}")
		return user

	async def _merge_profile(
		self,
		user: User,
		name: str | None,
		picture: str | None,
	) -> User:
		changed = False
		if name and name != user.name:
			user.name = name
			changed = True
		if picture and picture != user.picture:
			user.picture = picture
			changed = True
		if not changed:
			return user
		user.updated_at = datetime.now(timezone.utc)
		return await self.store.update_user(user)
