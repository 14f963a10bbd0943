# (c) Copyright Datacraft, 2026
"""WebAuthn/Passkey registration and authentication ceremonies."""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from uuid_extensions import uuid7str
from webauthn import (
	generate_authentication_options,
	generate_registration_options,
	options_to_json,
	verify_authentication_response,
	verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
	AttestationConveyancePreference,
	AuthenticatorAttachment,
	AuthenticatorSelectionCriteria,
	AuthenticatorTransport,
	COSEAlgorithmIdentifier,
	PublicKeyCredentialDescriptor,
	ResidentKeyRequirement,
	UserVerificationRequirement,
)

from auth_gateway.exceptions import (
	ChallengeNotFound,
	CredentialNotFound,
	IdentityStoreError,
	InvalidRequest,
	ReplayDetected,
	Unauthorized,
	VerificationFailed,
)
from auth_gateway.schema import (
	CeremonyVariant,
	Challenge,
	ChallengePurpose,
	Credential,
	IssuedCredentials,
	Platform,
	User,
)
from auth_gateway.store import IdentityStore
from auth_gateway.utils import normalize_email

from .challenge import ChallengeStore
from .identity import IdentityResolver
from .session import SessionService

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
	COSEAlgorithmIdentifier.ECDSA_SHA_256,
	COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]

AUTHENTICATION_PURPOSES = (
	ChallengePurpose.AUTHENTICATION,
	ChallengePurpose.DISCOVERABLE_AUTHENTICATION,
)


@dataclass
class CeremonyOptions:
	"""Options for navigator.credentials plus the challenge they embed."""
	options: dict[str, Any]
	challenge: Challenge
	variant: CeremonyVariant | None = None

	@property
	def challenge_id(self) -> str:
		return self.challenge.id


@dataclass
class RegistrationResult:
	user: User
	credential: Credential
	# Set only for passkey sign-up, where registering also signs in
	issued: IssuedCredentials | None = None


class PasskeyCeremonyManager:
	"""Runs registration and authentication ceremonies.

	Targeted and discoverable authentication share one code path; they
	differ only in the allow-list sent to the browser and the purpose the
	challenge is issued with.
	"""

	def __init__(
		self,
		store: IdentityStore,
		challenges: ChallengeStore,
		resolver: IdentityResolver,
		sessions: SessionService,
		rp_id: str = "localhost",
		rp_name: str = "Auth Gateway",
		origin: str = "https://localhost:5173",
		timeout: int = 60000,
		allow_challengeless_assertion: bool = False,
	):
		self.store = store
		self.challenges = challenges
		self.resolver = resolver
		self.sessions = sessions
		self.rp_id = rp_id
		self.rp_name = rp_name
		self.origin = origin
		self.timeout = timeout
		self.allow_challengeless_assertion = allow_challengeless_assertion

	# Registration

	async def begin_registration(self, user: User) -> CeremonyOptions:
		"""Options for adding a passkey to an existing account."""
		challenge = await self.challenges.issue(ChallengePurpose.REGISTRATION, user_id=user.id)
		existing = await self.store.list_credentials(user.id)
		options = self._registration_options(
			challenge,
			user_id=user.id,
			email=user.email,
			display_name=user.name or user.email,
			exclude=existing,
		)
		return CeremonyOptions(options=options, challenge=challenge)

	async def begin_signup(self, email: str, name: str | None = None) -> CeremonyOptions:
		"""Options for creating an account whose first credential is a passkey.

		The user does not exist until the attestation verifies; the pending
		id, email and name ride on the challenge.
		"""
		if not email or "@" not in email:
			raise InvalidRequest("A valid email is required")
		email = normalize_email(email)
		if await self.store.get_user_by_email(email) is not None:
			raise InvalidRequest("An account already exists for this email, sign in to add a passkey")

		pending_user_id = uuid7str()
		context = {"email": email}
		if name:
			context["name"] = name
		challenge = await self.challenges.issue(
			ChallengePurpose.REGISTRATION, user_id=pending_user_id, context=context,
		)
		options = self._registration_options(
			challenge,
			user_id=pending_user_id,
			email=email,
			display_name=name or email,
			exclude=[],
		)
		return CeremonyOptions(options=options, challenge=challenge)

	async def complete_registration(
		self,
		user: User | None,
		response: dict[str, Any],
		challenge_id: str,
		name: str | None = None,
		platform: Platform = Platform.WEB,
		user_agent: str | None = None,
	) -> RegistrationResult:
		"""Verify an attestation and store the new credential.

		``user`` is the signed-in account, or None when finishing a passkey
		sign-up. Nothing is persisted unless verification succeeds.
		"""
		challenge = await self.challenges.consume(challenge_id, (ChallengePurpose.REGISTRATION,))
		signup_email = challenge.context.get("email")

		if user is not None:
			if challenge.user_id != user.id:
				logger.warning(f"Registration challenge {challenge_id} belongs to another user")
				raise ChallengeNotFound()
		elif not signup_email:
			raise Unauthorized()

		try:
			verification = verify_registration_response(
				credential=response,
				expected_challenge=base64url_to_bytes(challenge.challenge),
				expected_rp_id=self.rp_id,
				expected_origin=self.origin,
				require_user_verification=True,
				supported_pub_key_algs=SUPPORTED_ALGORITHMS,
			)
		except WebAuthnException as e:
			logger.warning(f"Registration verification failed: {e}")
			raise VerificationFailed(str(e)) from e

		credential_id = bytes_to_base64url(verification.credential_id)
		if await self.store.get_credential(credential_id) is not None:
			raise InvalidRequest("This passkey is already registered")

		issued = None
		created_user = user is None
		if created_user:
			user = await self.resolver.register_new(
				challenge.user_id, signup_email, challenge.context.get("name"),
			)

		transports = response.get("response", {}).get("transports") or []
		try:
			credential = await self.store.create_credential(Credential(
				id=credential_id,
				user_id=user.id,
				public_key=bytes_to_base64url(verification.credential_public_key),
				counter=verification.sign_count,
				transports=[str(t) for t in transports],
				user_verified=verification.user_verified,
				device_type=verification.credential_device_type.value,
				backed_up=verification.credential_backed_up,
				aaguid=verification.aaguid or None,
				name=name,
				created_at=datetime.now(timezone.utc),
			))
		except IdentityStoreError:
			if created_user:
				# A sign-up account never exists without its passkey
				logger.warning(f"Removing user {user.id} after failed passkey registration")
				await self.store.delete_user(user.id)
			raise
		logger.info(f"Passkey {credential.id} registered for user {user.id}")

		if signup_email:
			user = await self.resolver.record_login(user, platform)
			issued = await self.sessions.issue_for_platform(user, platform, user_agent)

		return RegistrationResult(user=user, credential=credential, issued=issued)

	# Authentication

	async def begin_authentication(self, email: str | None = None) -> CeremonyOptions:
		"""Targeted options when the email has passkeys, discoverable otherwise.

		An unknown email gets the same discoverable options as no email at
		all, so the response does not reveal which accounts exist.
		"""
		credentials: list[Credential] = []
		user_id = None
		if email:
			user = await self.store.get_user_by_email(normalize_email(email))
			if user is not None:
				credentials = await self.store.list_credentials(user.id)
				user_id = user.id

		if credentials:
			variant = CeremonyVariant.TARGETED
			challenge = await self.challenges.issue(ChallengePurpose.AUTHENTICATION, user_id=user_id)
		else:
			variant = CeremonyVariant.DISCOVERABLE
			challenge = await self.challenges.issue(ChallengePurpose.DISCOVERABLE_AUTHENTICATION)

		options = generate_authentication_options(
			rp_id=self.rp_id,
			challenge=base64url_to_bytes(challenge.challenge),
			timeout=self.timeout,
			allow_credentials=[_descriptor(c) for c in credentials],
			user_verification=UserVerificationRequirement.REQUIRED,
		)
		return CeremonyOptions(
			options=json.loads(options_to_json(options)),
			challenge=challenge,
			variant=variant,
		)

	async def complete_authentication(
		self,
		response: dict[str, Any],
		challenge_id: str | None = None,
		platform: Platform = Platform.WEB,
		user_agent: str | None = None,
	) -> IssuedCredentials:
		"""Verify an assertion and sign the owner in."""
		expected_user_id = None
		if challenge_id:
			challenge = await self.challenges.consume(challenge_id, AUTHENTICATION_PURPOSES)
			expected_challenge = base64url_to_bytes(challenge.challenge)
			if challenge.purpose == ChallengePurpose.AUTHENTICATION:
				expected_user_id = challenge.user_id
		elif self.allow_challengeless_assertion:
			expected_challenge = self._challenge_from_client_data(response)
		else:
			raise InvalidRequest("challenge_id is required")

		credential_id = response.get("id") if isinstance(response, dict) else None
		if not credential_id:
			raise InvalidRequest("Missing credential id")

		credential = await self.store.get_credential(credential_id)
		if credential is None:
			logger.warning("Assertion for an unknown credential")
			raise CredentialNotFound()
		if expected_user_id and credential.user_id != expected_user_id:
			logger.warning(f"Credential {credential.id} is not allowed for this challenge")
			raise CredentialNotFound()
		self._check_user_handle(response, credential)

		stored_counter = credential.counter
		try:
			# Counter regression is checked below so it can be told apart
			# from a bad signature.
			verification = verify_authentication_response(
				credential=response,
				expected_challenge=expected_challenge,
				expected_rp_id=self.rp_id,
				expected_origin=self.origin,
				credential_public_key=base64url_to_bytes(credential.public_key),
				credential_current_sign_count=0,
				require_user_verification=True,
			)
		except WebAuthnException as e:
			logger.warning(f"Assertion verification failed for {credential.id}: {e}")
			raise VerificationFailed(str(e)) from e

		new_counter = verification.new_sign_count
		if (new_counter > 0 or stored_counter > 0) and new_counter <= stored_counter:
			logger.warning(
				f"Counter did not advance for {credential.id} ({new_counter} <= {stored_counter})"
			)
			raise ReplayDetected()

		updated = await self.store.update_credential_counter(
			credential.id,
			expected_counter=stored_counter,
			counter=new_counter,
			last_used=datetime.now(timezone.utc),
		)
		if not updated:
			logger.warning(f"Concurrent assertion lost the counter update for {credential.id}")
			raise ReplayDetected()

		user = await self.store.get_user(credential.user_id)
		if user is None:
			raise CredentialNotFound(f"Owner of {credential.id} no longer exists")

		user = await self.resolver.record_login(user, platform)
		issued = await self.sessions.issue_for_platform(user, platform, user_agent)
		logger.info(f"Passkey authentication successful for user {user.id} with {credential.id}")
		return issued

	# Credential management

	async def list_credentials(self, user: User) -> list[Credential]:
		return await self.store.list_credentials(user.id)

	async def rename_credential(self, user: User, credential_id: str, name: str) -> None:
		await self._owned_credential(user, credential_id)
		name = name.strip()
		if not name:
			raise InvalidRequest("Name must not be empty")
		if not await self.store.rename_credential(credential_id, name):
			raise InvalidRequest("Passkey not found")

	async def delete_credential(self, user: User, credential_id: str) -> None:
		await self._owned_credential(user, credential_id)
		if not await self.store.delete_credential(credential_id):
			raise InvalidRequest("Passkey not found")
		logger.info(f"Passkey {credential_id} deleted for user {user.id}")

	async def _owned_credential(self, user: User, credential_id: str) -> Credential:
		credential = await self.store.get_credential(credential_id)
		if credential is None or credential.user_id != user.id:
			raise InvalidRequest("Passkey not found")
		return credential

	def _registration_options(
		self,
		challenge: Challenge,
		user_id: str,
		email: str,
		display_name: str,
		exclude: list[Credential],
	) -> dict[str, Any]:
		options = generate_registration_options(
			rp_id=self.rp_id,
			rp_name=self.rp_name,
			user_id=user_id.encode(),
			user_name=email,
			user_display_name=display_name,
			challenge=base64url_to_bytes(challenge.challenge),
			timeout=self.timeout,
			attestation=AttestationConveyancePreference.NONE,
			authenticator_selection=AuthenticatorSelectionCriteria(
				authenticator_attachment=AuthenticatorAttachment.PLATFORM,
				resident_key=ResidentKeyRequirement.PREFERRED,
				user_verification=UserVerificationRequirement.REQUIRED,
			),
			supported_pub_key_algs=SUPPORTED_ALGORITHMS,
			exclude_credentials=[_descriptor(c) for c in exclude],
		)
		return json.loads(options_to_json(options))

	def _challenge_from_client_data(self, response: dict[str, Any]) -> bytes:
		# Legacy clients: the challenge is only known from the signed client
		# data, so there is no expiry and no single-use guarantee.
		try:
			client_data = json.loads(
				base64url_to_bytes(response["response"]["clientDataJSON"])
			)
			return base64url_to_bytes(client_data["challenge"])
		except (KeyError, TypeError, ValueError) as e:
			raise InvalidRequest("Malformed client data") from e

	def _check_user_handle(self, response: dict[str, Any], credential: Credential) -> None:
		user_handle = (response.get("response") or {}).get("userHandle")
		if not user_handle:
			return
		try:
			owner = base64url_to_bytes(user_handle).decode()
		except (TypeError, ValueError):
			owner = None
		if owner != credential.user_id:
			logger.warning(f"User handle does not match the owner of {credential.id}")
			raise CredentialNotFound()


def _descriptor(credential: Credential) -> PublicKeyCredentialDescriptor:
	transports = []
	for transport in credential.transports:
		try:
			transports.append(AuthenticatorTransport(transport))
		except ValueError:
			continue
	return PublicKeyCredentialDescriptor(
		id=base64url_to_bytes(credential.id),
		transports=transports or None,
	)
