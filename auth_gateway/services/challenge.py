# (c) Copyright Datacraft, 2026
"""Short-lived, single-use WebAuthn challenges."""
import logging
import secrets
from datetime import datetime, timedelta, timezone

from uuid_extensions import uuid7str
from webauthn.helpers import bytes_to_base64url

from auth_gateway.exceptions import ChallengeExpired, ChallengeNotFound
from auth_gateway.schema import Challenge, ChallengePurpose
from auth_gateway.store import IdentityStore

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 64


class ChallengeStore:
	"""Issues challenges and redeems each of them at most once."""

	def __init__(self, store: IdentityStore, ttl: timedelta = timedelta(minutes=5)):
		self.store = store
		self.ttl = ttl

	async def issue(
		self,
		purpose: ChallengePurpose,
		user_id: str | None = None,
		ttl: timedelta | None = None,
		context: dict[str, str] | None = None,
	) -> Challenge:
		now = datetime.now(timezone.utc)
		challenge = Challenge(
			id=uuid7str(),
			challenge=bytes_to_base64url(secrets.token_bytes(CHALLENGE_BYTES)),
			purpose=purpose,
			user_id=user_id,
			expires_at=now + (ttl or self.ttl),
			created_at=now,
			context=context or {},
		)
		return await self.store.create_challenge(challenge)

	async def get(self, challenge_id: str) -> Challenge:
		"""Read without consuming. Expired challenges count as absent."""
		challenge = await self.store.get_challenge(challenge_id)
		if challenge is None:
			raise ChallengeNotFound()
		if challenge.is_expired():
			raise ChallengeExpired()
		return challenge

	async def consume(
		self,
		challenge_id: str,
		purposes: tuple[ChallengePurpose, ...] | None = None,
	) -> Challenge:
		"""Atomically fetch and delete.

		The challenge is gone afterwards whatever the outcome, so an expired
		or wrong-purpose challenge cannot be retried either.
		"""
		challenge = await self.store.delete_challenge(challenge_id)
		if challenge is None:
			raise ChallengeNotFound()
		if challenge.is_expired():
			logger.info(f"Challenge {challenge_id} redeemed after expiry")
			raise ChallengeExpired()
		if purposes and challenge.purpose not in purposes:
			logger.warning(f"Challenge {challenge_id} used for the wrong ceremony")
			raise ChallengeNotFound()
		return challenge
