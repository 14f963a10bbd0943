# (c) Copyright Datacraft, 2026
"""Tables backing the local identity store."""
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
	String, ForeignKey, Index, UniqueConstraint, Boolean, Integer, Text,
	JSON, DateTime, TypeDecorator,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def utc_now() -> datetime:
	return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
	"""Stores naive UTC, always hands back aware UTC datetimes."""
	impl = DateTime
	cache_ok = True

	def process_bind_param(self, value, dialect):
		if value is None:
			return None
		if value.tzinfo is not None:
			value = value.astimezone(timezone.utc)
		return value.replace(tzinfo=None)

	def process_result_value(self, value, dialect):
		if value is None:
			return None
		return value.replace(tzinfo=timezone.utc)


class UserRow(Base):
	__tablename__ = "users"

	id: Mapped[str] = mapped_column(String(64), primary_key=True)
	email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
	name: Mapped[str | None] = mapped_column(String(200), nullable=True)
	picture: Mapped[str | None] = mapped_column(Text, nullable=True)
	last_login_platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
	last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
	created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
	updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

	identities: Mapped[List["UserIdentityRow"]] = relationship(
		"UserIdentityRow",
		back_populates="user",
		cascade="all, delete-orphan",
		lazy="selectin",
	)


class UserIdentityRow(Base):
	"""A provider login linked to a user."""
	__tablename__ = "user_identities"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	user_id: Mapped[str] = mapped_column(
		ForeignKey("users.id", ondelete="CASCADE"), nullable=False
	)
	provider: Mapped[str] = mapped_column(String(32), nullable=False)
	provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
	linked_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

	user: Mapped["UserRow"] = relationship("UserRow", back_populates="identities")

	__table_args__ = (
		UniqueConstraint("provider", "provider_id", name="uq_identity_provider_subject"),
		Index("idx_identity_user", "user_id"),
	)


class CredentialRow(Base):
	__tablename__ = "webauthn_credentials"

	id: Mapped[str] = mapped_column(String(1024), primary_key=True)
	user_id: Mapped[str] = mapped_column(
		ForeignKey("users.id", ondelete="CASCADE"), nullable=False
	)
	public_key: Mapped[str] = mapped_column(Text, nullable=False)
	counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
	transports: Mapped[list] = mapped_column(JSON, default=list)
	user_verified: Mapped[bool] = mapped_column(Boolean, default=False)
	device_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
	backed_up: Mapped[bool] = mapped_column(Boolean, default=False)
	aaguid: Mapped[str | None] = mapped_column(String(64), nullable=True)
	name: Mapped[str | None] = mapped_column(String(100), nullable=True)
	created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
	last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

	__table_args__ = (
		Index("idx_credential_user", "user_id"),
	)


class ChallengeRow(Base):
	__tablename__ = "webauthn_challenges"

	id: Mapped[str] = mapped_column(String(64), primary_key=True)
	challenge: Mapped[str] = mapped_column(String(255), nullable=False)
	purpose: Mapped[str] = mapped_column(String(40), nullable=False)
	user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
	context: Mapped[dict] = mapped_column(JSON, default=dict)
	expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
	created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

	__table_args__ = (
		Index("idx_challenge_expires", "expires_at"),
	)


class SessionRow(Base):
	__tablename__ = "sessions"

	id: Mapped[str] = mapped_column(String(64), primary_key=True)
	user_id: Mapped[str] = mapped_column(
		ForeignKey("users.id", ondelete="CASCADE"), nullable=False
	)
	platform: Mapped[str] = mapped_column(String(20), nullable=False)
	user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
	expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
	created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

	__table_args__ = (
		Index("idx_session_user", "user_id"),
	)


class AuthTokenRow(Base):
	"""Access/refresh token pair for bearer platforms."""
	__tablename__ = "auth_tokens"

	id: Mapped[str] = mapped_column(String(64), primary_key=True)
	user_id: Mapped[str] = mapped_column(
		ForeignKey("users.id", ondelete="CASCADE"), nullable=False
	)
	access_token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
	refresh_token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
	access_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
	refresh_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
	platform: Mapped[str] = mapped_column(String(20), nullable=False)
	user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
	revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
	last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
	created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

	__table_args__ = (
		Index("idx_token_user", "user_id"),
	)
