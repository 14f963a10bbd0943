# (c) Copyright Datacraft, 2026
"""Application factory."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from auth_gateway.cache import TTLCache
from auth_gateway.config import Settings, get_settings
from auth_gateway.exceptions import AuthError, InternalError
from auth_gateway.routers import auth_router, oauth_router, passkey_router
from auth_gateway.services import (
	ChallengeStore,
	IdentityResolver,
	OAuthFlowManager,
	PasskeyCeremonyManager,
	ProviderRegistry,
	SessionService,
)
from auth_gateway.store import IdentityStore, build_identity_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	yield
	await app.state.providers.close()
	await app.state.store.close()
	app.state.cache.clear()


def create_app(
	settings: Settings | None = None,
	store: IdentityStore | None = None,
	provider_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
	"""Wire the services onto ``app.state`` and mount the routers.

	``store`` and ``provider_transport`` replace the configured identity
	store and the outbound provider transport, mainly for tests.
	"""
	if settings is None:
		settings = get_settings()
	logging.basicConfig(level=settings.log_level)

	if store is None:
		store = build_identity_store(settings)

	cache = TTLCache(max_age=timedelta(seconds=settings.provider_cache_max_age))
	challenges = ChallengeStore(store, ttl=timedelta(seconds=settings.challenge_ttl_seconds))
	resolver = IdentityResolver(store)
	sessions = SessionService.from_settings(store, settings)
	providers = ProviderRegistry(settings, cache, transport=provider_transport)

	app = FastAPI(title="Auth Gateway", lifespan=lifespan)
	app.state.settings = settings
	app.state.store = store
	app.state.cache = cache
	app.state.providers = providers
	app.state.sessions = sessions
	app.state.resolver = resolver
	app.state.passkeys = PasskeyCeremonyManager(
		store=store,
		challenges=challenges,
		resolver=resolver,
		sessions=sessions,
		rp_id=settings.webauthn_rp_id,
		rp_name=settings.webauthn_rp_name,
		origin=settings.webauthn_origin,
		timeout=settings.webauthn_timeout,
		allow_challengeless_assertion=settings.webauthn_allow_challengeless_assertion,
	)
	app.state.oauth = OAuthFlowManager(providers, resolver, sessions, settings)

	app.include_router(passkey_router)
	app.include_router(oauth_router)
	app.include_router(auth_router)

	@app.exception_handler(AuthError)
	async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
		if isinstance(exc, InternalError):
			logger.error(f"{exc.code} on {request.url.path}: {exc.detail}")
		return JSONResponse(
			status_code=exc.status_code,
			content={"success": False, "error": exc.public_message},
		)

	return app
