# (c) Copyright Datacraft, 2026
"""Token refresh and exchange, logout and current-user endpoints."""
import logging

from fastapi import APIRouter, Depends, Request, Response

from auth_gateway import schema
from auth_gateway.config import Settings
from auth_gateway.dependencies import (
	delete_session_cookie,
	get_app_settings,
	get_current_user,
	get_identity_resolver,
	get_session_service,
	token_response,
	user_agent,
)
from auth_gateway.exceptions import Unauthorized
from auth_gateway.services import IdentityResolver, SessionService
from auth_gateway.utils import from_cookie, from_header

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/token/refresh", response_model=schema.TokenResponse)
async def refresh_token(
	body: schema.TokenRefreshRequest,
	sessions: SessionService = Depends(get_session_service),
) -> schema.TokenResponse:
	"""Exchange a refresh token for a new token pair."""
	tokens = await sessions.refresh_access_token(body.refresh_token)
	return token_response(tokens)


@router.post("/token/exchange", response_model=schema.TokenResponse)
async def exchange_token(
	request: Request,
	body: schema.TokenExchangeRequest,
	sessions: SessionService = Depends(get_session_service),
) -> schema.TokenResponse:
	"""Exchange a web session token for a bearer token pair."""
	issued = await sessions.exchange_session(body.session_token, body.platform, user_agent(request))
	return token_response(issued.tokens, issued.user)


@router.post("/logout", response_model=schema.LogoutResponse)
async def logout(
	request: Request,
	response: Response,
	body: schema.LogoutRequest | None = None,
	sessions: SessionService = Depends(get_session_service),
	settings: Settings = Depends(get_app_settings),
) -> schema.LogoutResponse:
	"""End the current session or token pair, or every one with ``logout_all``.

	Logging out twice is not an error; unknown or expired credentials are
	simply skipped.
	"""
	body = body or schema.LogoutRequest()
	revoked = 0
	user_id = None

	session_token = body.session_token or from_cookie(request, settings.session_cookie_name)
	if session_token:
		try:
			user, session = await sessions.validate_session(session_token)
			user_id = user.id
			if await sessions.invalidate_session(session.id):
				revoked += 1
		except Unauthorized:
			logger.debug("Logout with an unknown or expired session")

	access_token = body.access_token or from_header(request)
	if access_token:
		try:
			user, record = await sessions.validate_access_token(access_token)
			user_id = user.id
			if await sessions.revoke_token(record.id):
				revoked += 1
		except Unauthorized:
			logger.debug("Logout with an unknown or expired access token")

	if body.logout_all:
		if user_id is None:
			raise Unauthorized()
		revoked += await sessions.revoke_all_for_user(user_id)

	delete_session_cookie(response, settings)
	if user_id:
		logger.info(f"User {user_id} logged out ({revoked} credentials revoked)")
	return schema.LogoutResponse(
		message="Logged out from all devices" if body.logout_all else "Logged out",
		revoked=revoked,
	)


@router.get("/user", response_model=schema.UserPublic)
async def current_user(
	user: schema.User = Depends(get_current_user),
) -> schema.UserPublic:
	return schema.UserPublic.model_validate(user)


@router.patch("/user", response_model=schema.ProfileUpdateResponse)
async def update_current_user(
	body: schema.ProfileUpdateRequest,
	user: schema.User = Depends(get_current_user),
	resolver: IdentityResolver = Depends(get_identity_resolver),
) -> schema.ProfileUpdateResponse:
	user = await resolver.update_profile(user, body.name, body.picture)
	return schema.ProfileUpdateResponse(user=schema.UserPublic.model_validate(user))
