# (c) Copyright Datacraft, 2026
"""FastAPI dependencies and response helpers shared by the routers."""
from datetime import datetime, timezone

from fastapi import Depends, Request, Response

from auth_gateway import schema
from auth_gateway.config import Settings
from auth_gateway.exceptions import Unauthorized
from auth_gateway.services import (
	IdentityResolver,
	OAuthFlowManager,
	PasskeyCeremonyManager,
	SessionService,
)
from auth_gateway.utils import from_cookie, from_header


def get_app_settings(request: Request) -> Settings:
	return request.app.state.settings


def get_session_service(request: Request) -> SessionService:
	return request.app.state.sessions


def get_identity_resolver(request: Request) -> IdentityResolver:
	return request.app.state.resolver


def get_passkey_manager(request: Request) -> PasskeyCeremonyManager:
	return request.app.state.passkeys


def get_oauth_manager(request: Request) -> OAuthFlowManager:
	return request.app.state.oauth


async def get_current_user(
	request: Request,
	settings: Settings = Depends(get_app_settings),
	sessions: SessionService = Depends(get_session_service),
) -> schema.User:
	"""Session cookie first, then a bearer access token."""
	session_token = from_cookie(request, settings.session_cookie_name)
	if session_token:
		user, _ = await sessions.validate_session(session_token)
		return user

	access_token = from_header(request)
	if access_token:
		user, _ = await sessions.validate_access_token(access_token)
		return user

	raise Unauthorized()


async def get_optional_user(
	request: Request,
	settings: Settings = Depends(get_app_settings),
	sessions: SessionService = Depends(get_session_service),
) -> schema.User | None:
	try:
		return await get_current_user(request, settings, sessions)
	except Unauthorized:
		return None


def user_agent(request: Request) -> str | None:
	return request.headers.get("User-Agent")


def set_session_cookie(
	response: Response,
	settings: Settings,
	token: str,
	expires_at: datetime,
) -> None:
	response.set_cookie(
		key=settings.session_cookie_name,
		value=token,
		expires=expires_at,
		path="/",
		httponly=True,
		secure=settings.cookie_secure,
		samesite="lax",
	)


def delete_session_cookie(response: Response, settings: Settings) -> None:
	response.delete_cookie(
		settings.session_cookie_name,
		path="/",
		httponly=True,
		secure=settings.cookie_secure,
		samesite="lax",
	)


def token_response(tokens: schema.TokenPair, user: schema.User | None = None) -> schema.TokenResponse:
	expires_in = int((tokens.access_expires_at - datetime.now(timezone.utc)).total_seconds())
	return schema.TokenResponse(
		access_token=tokens.access_token,
		refresh_token=tokens.refresh_token,
		expires_in=max(expires_in, 0),
		user=schema.UserPublic.model_validate(user) if user else None,
	)


def apply_issued(
	response: Response,
	settings: Settings,
	issued: schema.IssuedCredentials,
) -> schema.TokenResponse | None:
	"""Set the session cookie for web sign-ins, or return the bearer tokens."""
	if issued.session_token and issued.session:
		set_session_cookie(response, settings, issued.session_token, issued.session.expires_at)
		return None
	if issued.tokens:
		return token_response(issued.tokens, issued.user)
	return None
