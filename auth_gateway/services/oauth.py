# (c) Copyright Datacraft, 2026
"""OAuth2 authorization code flow with PKCE."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from auth_gateway.config import Settings
from auth_gateway.exceptions import InvalidRequest, StateMismatch
from auth_gateway.schema import (
	IssuedCredentials,
	OAuthFlowState,
	OAuthProviderName,
	Platform,
)
from auth_gateway.utils import constant_time_equals

from .identity import IdentityResolver
from .pkce import code_challenge_s256, generate_code_verifier, generate_state
from .providers import ProviderRegistry
from .session import SessionService

logger = logging.getLogger(__name__)


def state_cookie_name(provider: OAuthProviderName) -> str:
	return f"{provider.value}_oauth_state"


def verifier_cookie_name(provider: OAuthProviderName) -> str:
	return f"{provider.value}_oauth_code_verifier"


@dataclass
class FlowStart:
	authorization_url: str
	flow: OAuthFlowState


class OAuthFlowManager:
	"""Starts and completes provider logins.

	Nothing is kept server-side between the two halves of a flow: the
	state and verifier live in http-only cookies for the web and are handed
	to native apps, which resubmit them with the code.
	"""

	def __init__(
		self,
		registry: ProviderRegistry,
		resolver: IdentityResolver,
		sessions: SessionService,
		settings: Settings,
	):
		self.registry = registry
		self.resolver = resolver
		self.sessions = sessions
		self.settings = settings

	@property
	def state_ttl(self) -> timedelta:
		return timedelta(seconds=self.settings.oauth_state_ttl_seconds)

	def redirect_uri_for(
		self,
		provider: OAuthProviderName,
		platform: Platform,
		redirect_uri: str | None = None,
	) -> str:
		base_url = self.settings.public_base_url.rstrip("/")
		if platform == Platform.WEB:
			if redirect_uri:
				raise InvalidRequest("redirect_uri is only accepted for native platforms")
			return f"{base_url}/auth/{provider.value}/callback"

		if not redirect_uri:
			return f"{base_url}/api/auth/callback/{provider.value}"
		allowed = self.settings.oauth_mobile_redirect_prefixes
		if allowed and not any(redirect_uri.startswith(prefix) for prefix in allowed):
			logger.warning(f"Rejected redirect_uri for {provider.value}: {redirect_uri}")
			raise InvalidRequest("redirect_uri is not allowed")
		return redirect_uri

	def begin_flow(
		self,
		provider: OAuthProviderName | str,
		platform: Platform,
		redirect_uri: str | None = None,
	) -> FlowStart:
		oauth_provider = self.registry.get(provider)
		name = oauth_provider.name
		target = self.redirect_uri_for(name, platform, redirect_uri)

		state = generate_state()
		code_verifier = generate_code_verifier()
		url = oauth_provider.build_authorization_url(
			state=state,
			code_challenge=code_challenge_s256(code_verifier),
			redirect_uri=target,
		)
		flow = OAuthFlowState(
			state=state,
			code_verifier=code_verifier,
			provider=name,
			platform=platform,
			redirect_uri=target,
			expires_at=datetime.now(timezone.utc) + self.state_ttl,
		)
		logger.info(f"OAuth flow started with {name.value} for {platform.value}")
		return FlowStart(authorization_url=url, flow=flow)

	async def complete_flow(
		self,
		provider: OAuthProviderName | str,
		code: str | None,
		state: str | None,
		stored_state: str | None,
		code_verifier: str | None,
		platform: Platform,
		redirect_uri: str | None = None,
		user_payload: dict[str, Any] | None = None,
		user_agent: str | None = None,
	) -> IssuedCredentials:
		"""Verify state, exchange the code and sign the user in.

		The state comparison happens before anything else so a forged
		callback never reaches the provider.
		"""
		if not constant_time_equals(state, stored_state):
			logger.warning(f"OAuth state mismatch for {provider}")
			raise StateMismatch()
		if not code:
			raise InvalidRequest("Missing authorization code")
		if not code_verifier:
			raise InvalidRequest("Missing code verifier")

		oauth_provider = self.registry.get(provider)
		name = oauth_provider.name
		target = self.redirect_uri_for(name, platform, redirect_uri)

		tokens = await oauth_provider.exchange_code(code, code_verifier, target)
		claims = await oauth_provider.parse_identity_claims(tokens, user_payload)

		user = await self.resolver.find_or_create(
			email=claims.email,
			name=claims.name,
			picture=claims.picture,
			provider=name.value,
			provider_id=claims.subject,
		)
		user = await self.resolver.record_login(user, platform)
		issued = await self.sessions.issue_for_platform(user, platform, user_agent)
		logger.info(f"OAuth login with {name.value} for user {user.id} ({platform.value})")
		return issued
