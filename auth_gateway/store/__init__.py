# (c) Copyright Datacraft, 2026
"""Identity store backends."""
from auth_gateway.config import Settings, StoreBackend
from auth_gateway.db import create_tables, make_engine, make_session_factory

from .base import IdentityStore
from .http import HttpIdentityStore
from .sql import SqlIdentityStore


def build_identity_store(settings: Settings) -> IdentityStore:
	"""Create the backend selected by ``identity_store_backend``."""
	if settings.identity_store_backend == StoreBackend.HTTP:
		if not settings.identity_store_url:
			raise ValueError("identity_store_url is required for the http backend")
		return HttpIdentityStore(
			base_url=settings.identity_store_url,
			token=settings.identity_store_token,
			timeout=settings.identity_store_timeout,
		)

	engine = make_engine(settings)
	create_tables(engine)
	return SqlIdentityStore(make_session_factory(engine))


__all__ = [
	"IdentityStore",
	"HttpIdentityStore",
	"SqlIdentityStore",
	"build_identity_store",
]
