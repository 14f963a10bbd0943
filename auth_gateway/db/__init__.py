# (c) Copyright Datacraft, 2026
"""Database module for the local identity store backend."""
from .orm import (
	UserRow, UserIdentityRow, CredentialRow, ChallengeRow,
	SessionRow, AuthTokenRow,
)
from .base import Base
from .engine import make_engine, make_session_factory, create_tables

__all__ = [
	'Base',
	'UserRow',
	'UserIdentityRow',
	'CredentialRow',
	'ChallengeRow',
	'SessionRow',
	'AuthTokenRow',
	'make_engine',
	'make_session_factory',
	'create_tables',
]
