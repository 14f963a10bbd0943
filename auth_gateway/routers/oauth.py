# (c) Copyright Datacraft, 2026
"""OAuth sign-in endpoints for Google and Apple.

Web browsers get the state and PKCE verifier as http-only cookies and end
up with a session cookie. Native apps hold the state and verifier
themselves, resubmit them with the code and get a bearer token pair.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Form, Query, Request, Response
from fastapi.responses import RedirectResponse

from auth_gateway import schema
from auth_gateway.config import Settings
from auth_gateway.dependencies import (
	get_app_settings,
	get_oauth_manager,
	set_session_cookie,
	token_response,
	user_agent,
)
from auth_gateway.exceptions import AuthError, InvalidRequest, ProviderError
from auth_gateway.schema import OAuthProviderName, Platform
from auth_gateway.services import OAuthFlowManager
from auth_gateway.services.oauth import state_cookie_name, verifier_cookie_name
from auth_gateway.services.providers import parse_apple_user

logger = logging.getLogger(__name__)
router = APIRouter(tags=["OAuth"])

LOGIN_PATH = "/auth/login"


def _provider_name(provider: str) -> OAuthProviderName:
	try:
		return OAuthProviderName(provider)
	except ValueError:
		raise InvalidRequest("Unsupported OAuth provider")


def _cookie_samesite(provider: OAuthProviderName, settings: Settings) -> str:
	# Apple posts the callback cross-site, which lax cookies do not survive
	if provider == OAuthProviderName.APPLE and settings.cookie_secure:
		return "none"
	return "lax"


def _set_flow_cookies(
	response: Response,
	settings: Settings,
	provider: OAuthProviderName,
	state: str,
	code_verifier: str,
	expires_at: datetime,
) -> None:
	for key, value in (
		(state_cookie_name(provider), state),
		(verifier_cookie_name(provider), code_verifier),
	):
		response.set_cookie(
			key=key,
			value=value,
			expires=expires_at,
			path="/",
			httponly=True,
			secure=settings.cookie_secure,
			samesite=_cookie_samesite(provider, settings),
		)


def _clear_flow_cookies(response: Response, settings: Settings, provider: OAuthProviderName) -> None:
	for key in (state_cookie_name(provider), verifier_cookie_name(provider)):
		response.delete_cookie(
			key,
			path="/",
			httponly=True,
			secure=settings.cookie_secure,
			samesite=_cookie_samesite(provider, settings),
		)


def _login_error(error: str) -> RedirectResponse:
	return RedirectResponse(f"{LOGIN_PATH}?error={error}", status_code=302)


@router.post("/api/auth/oauth/{provider}", response_model=schema.OAuthBeginResponse)
async def begin_oauth(
	provider: str,
	body: schema.OAuthBeginRequest,
	response: Response,
	manager: OAuthFlowManager = Depends(get_oauth_manager),
	settings: Settings = Depends(get_app_settings),
) -> schema.OAuthBeginResponse:
	"""Start a provider login for any platform."""
	name = _provider_name(provider)
	start = manager.begin_flow(name, body.platform, body.redirect_uri)
	flow = start.flow

	code_verifier = None
	if flow.platform == Platform.WEB:
		_set_flow_cookies(response, settings, name, flow.state, flow.code_verifier, flow.expires_at)
	else:
		code_verifier = flow.code_verifier

	return schema.OAuthBeginResponse(
		authorization_url=start.authorization_url,
		state=flow.state,
		code_verifier=code_verifier,
		expires_in=settings.oauth_state_ttl_seconds,
	)


@router.get("/api/auth/oauth/{provider}")
async def begin_oauth_redirect(
	provider: str,
	manager: OAuthFlowManager = Depends(get_oauth_manager),
	settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
	"""Browser entry point: redirect straight to the provider."""
	try:
		name = _provider_name(provider)
		start = manager.begin_flow(name, Platform.WEB)
	except AuthError as e:
		logger.error(f"OAuth initiation failed for {provider}: {e.detail}")
		return _login_error(e.code)

	response = RedirectResponse(start.authorization_url, status_code=302)
	flow = start.flow
	_set_flow_cookies(response, settings, name, flow.state, flow.code_verifier, flow.expires_at)
	return response


async def _finish_web_callback(
	request: Request,
	provider: OAuthProviderName,
	manager: OAuthFlowManager,
	settings: Settings,
	code: str | None,
	state: str | None,
	error: str | None,
	error_description: str | None = None,
	user_payload: dict | None = None,
) -> RedirectResponse:
	try:
		if error:
			logger.warning(f"OAuth error from {provider.value}: {error} {error_description or ''}")
			raise ProviderError(error)
		issued = await manager.complete_flow(
			provider,
			code=code,
			state=state,
			stored_state=request.cookies.get(state_cookie_name(provider)),
			code_verifier=request.cookies.get(verifier_cookie_name(provider)),
			platform=Platform.WEB,
			user_payload=user_payload,
			user_agent=user_agent(request),
		)
	except AuthError as e:
		logger.warning(f"OAuth callback for {provider.value} failed ({e.code}): {e.detail}")
		response = _login_error(e.code)
		_clear_flow_cookies(response, settings, provider)
		return response

	response = RedirectResponse("/", status_code=302)
	_clear_flow_cookies(response, settings, provider)
	if issued.session_token and issued.session:
		set_session_cookie(response, settings, issued.session_token, issued.session.expires_at)
	return response


@router.get("/auth/{provider}/callback")
async def oauth_web_callback(
	provider: str,
	request: Request,
	code: str | None = Query(None),
	state: str | None = Query(None),
	error: str | None = Query(None),
	error_description: str | None = Query(None),
	manager: OAuthFlowManager = Depends(get_oauth_manager),
	settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
	try:
		name = _provider_name(provider)
	except InvalidRequest:
		return _login_error("unsupported_provider")
	return await _finish_web_callback(
		request, name, manager, settings, code, state, error, error_description,
	)


@router.post("/auth/apple/callback")
async def apple_web_callback(
	request: Request,
	code: str | None = Form(None),
	state: str | None = Form(None),
	user: str | None = Form(None),
	error: str | None = Form(None),
	manager: OAuthFlowManager = Depends(get_oauth_manager),
	settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
	"""Apple's form_post callback; ``user`` is only sent on first login."""
	return await _finish_web_callback(
		request,
		OAuthProviderName.APPLE,
		manager,
		settings,
		code,
		state,
		error,
		user_payload=parse_apple_user(user),
	)


@router.post("/api/auth/callback/{provider}", response_model=schema.TokenResponse)
async def oauth_mobile_callback(
	provider: str,
	request: Request,
	body: schema.OAuthMobileCallbackRequest,
	manager: OAuthFlowManager = Depends(get_oauth_manager),
) -> schema.TokenResponse:
	"""Native apps exchange the code for a bearer token pair."""
	name = _provider_name(provider)
	if body.platform == Platform.WEB:
		raise InvalidRequest("Browsers must use the web callback")

	issued = await manager.complete_flow(
		name,
		code=body.code,
		state=body.state,
		stored_state=body.stored_state,
		code_verifier=body.code_verifier,
		platform=body.platform,
		redirect_uri=body.redirect_uri,
		user_payload=body.user,
		user_agent=user_agent(request),
	)
	return token_response(issued.tokens, issued.user)
