# (c) Copyright Datacraft, 2026
"""SQLAlchemy-backed identity store."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import select, delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession, sessionmaker

from auth_gateway.db.orm import (
	AuthTokenRow,
	ChallengeRow,
	CredentialRow,
	SessionRow,
	UserIdentityRow,
	UserRow,
)
from auth_gateway.exceptions import IdentityStoreError
from auth_gateway.schema import (
	Challenge,
	Credential,
	ProviderIdentity,
	Session,
	TokenRecord,
	User,
)

from .base import IdentityStore

logger = logging.getLogger(__name__)


class SqlIdentityStore(IdentityStore):
	"""Identity store on a relational database.

	Single-use and compare-and-swap guarantees come from conditional
	DELETE/UPDATE statements: whichever caller's statement reports one
	affected row wins.
	"""

	def __init__(self, session_factory: sessionmaker[DBSession]):
		self._session_factory = session_factory

	@contextmanager
	def _transaction(self) -> Iterator[DBSession]:
		db = self._session_factory()
		try:
			yield db
		except SQLAlchemyError as e:
			db.rollback()
			logger.error(f"Identity store query failed: {e}")
			raise IdentityStoreError(str(e)) from e
		finally:
			db.close()

	# Users

	async def create_user(self, user: User) -> User:
		with self._transaction() as db:
			row = UserRow(
				id=user.id,
				email=user.email,
				name=user.name,
				picture=user.picture,
				last_login_platform=user.last_login_platform.value if user.last_login_platform else None,
				last_login_at=user.last_login_at,
				created_at=user.created_at,
				updated_at=user.updated_at,
				identities=[
					UserIdentityRow(
						provider=identity.provider,
						provider_id=identity.provider_id,
						linked_at=identity.linked_at,
					)
					for identity in user.identities
				],
			)
			db.add(row)
			db.commit()
			db.refresh(row)
			return User.model_validate(row)

	async def get_user(self, user_id: str) -> User | None:
		with self._transaction() as db:
			row = db.get(UserRow, user_id)
			return User.model_validate(row) if row else None

	async def get_user_by_email(self, email: str) -> User | None:
		with self._transaction() as db:
			row = db.scalar(select(UserRow).where(UserRow.email == email))
			return User.model_validate(row) if row else None

	async def get_user_by_provider(self, provider: str, provider_id: str) -> User | None:
		with self._transaction() as db:
			row = db.scalar(
				select(UserRow)
				.join(UserIdentityRow)
				.where(
					UserIdentityRow.provider == provider,
					UserIdentityRow.provider_id == provider_id,
				)
			)
			return User.model_validate(row) if row else None

	async def update_user(self, user: User) -> User:
		with self._transaction() as db:
			row = db.get(UserRow, user.id)
			if row is None:
				raise IdentityStoreError(f"User not found: {user.id}")
			row.email = user.email
			row.name = user.name
			row.picture = user.picture
			row.last_login_platform = user.last_login_platform.value if user.last_login_platform else None
			row.last_login_at = user.last_login_at
			row.updated_at = user.updated_at
			db.commit()
			db.refresh(row)
			return User.model_validate(row)

	async def link_identity(self, user_id: str, identity: ProviderIdentity) -> None:
		with self._transaction() as db:
			db.add(UserIdentityRow(
				user_id=user_id,
				provider=identity.provider,
				provider_id=identity.provider_id,
				linked_at=identity.linked_at,
			))
			db.commit()

	async def delete_user(self, user_id: str) -> bool:
		with self._transaction() as db:
			row = db.get(UserRow, user_id)
			if row is None:
				return False
			db.delete(row)
			db.commit()
			return True

	# WebAuthn credentials

	async def create_credential(self, credential: Credential) -> Credential:
		with self._transaction() as db:
			row = CredentialRow(**credential.model_dump())
			db.add(row)
			db.commit()
			return Credential.model_validate(row)

	async def get_credential(self, credential_id: str) -> Credential | None:
		with self._transaction() as db:
			row = db.get(CredentialRow, credential_id)
			return Credential.model_validate(row) if row else None

	async def update_credential_counter(
		self,
		credential_id: str,
		expected_counter: int,
		counter: int,
		last_used: datetime,
	) -> bool:
		with self._transaction() as db:
			result = db.execute(
				update(CredentialRow)
				.where(
					CredentialRow.id == credential_id,
					CredentialRow.counter == expected_counter,
				)
				.values(counter=counter, last_used_at=last_used)
			)
			db.commit()
			return result.rowcount == 1

	async def list_credentials(self, user_id: str) -> list[Credential]:
		with self._transaction() as db:
			rows = db.scalars(
				select(CredentialRow)
				.where(CredentialRow.user_id == user_id)
				.order_by(CredentialRow.created_at)
			)
			return [Credential.model_validate(row) for row in rows]

	async def delete_credential(self, credential_id: str) -> bool:
		with self._transaction() as db:
			result = db.execute(delete(CredentialRow).where(CredentialRow.id == credential_id))
			db.commit()
			return result.rowcount == 1

	async def rename_credential(self, credential_id: str, name: str) -> bool:
		with self._transaction() as db:
			result = db.execute(
				update(CredentialRow)
				.where(CredentialRow.id == credential_id)
				.values(name=name)
			)
			db.commit()
			return result.rowcount == 1

	# Challenges

	async def create_challenge(self, challenge: Challenge) -> Challenge:
		with self._transaction() as db:
			self._cleanup_expired_challenges(db)
			row = ChallengeRow(**challenge.model_dump())
			row.purpose = challenge.purpose.value
			db.add(row)
			db.commit()
			return Challenge.model_validate(row)

	async def get_challenge(self, challenge_id: str) -> Challenge | None:
		with self._transaction() as db:
			row = db.get(ChallengeRow, challenge_id)
			return Challenge.model_validate(row) if row else None

	async def delete_challenge(self, challenge_id: str) -> Challenge | None:
		with self._transaction() as db:
			row = db.get(ChallengeRow, challenge_id)
			if row is None:
				return None
			challenge = Challenge.model_validate(row)
			result = db.execute(
				delete(ChallengeRow)
				.where(ChallengeRow.id == challenge_id)
				.execution_options(synchronize_session=False)
			)
			db.commit()
			if result.rowcount != 1:
				return None
			return challenge

	def _cleanup_expired_challenges(self, db: DBSession) -> None:
		"""Remove expired challenges from database."""
		db.execute(
			delete(ChallengeRow)
			.where(ChallengeRow.expires_at < datetime.now(timezone.utc))
			.execution_options(synchronize_session=False)
		)
		db.flush()

	# Sessions

	async def create_session(self, session: Session) -> Session:
		with self._transaction() as db:
			row = SessionRow(**session.model_dump())
			row.platform = session.platform.value
			db.add(row)
			db.commit()
			return Session.model_validate(row)

	async def get_session(self, session_id: str) -> Session | None:
		with self._transaction() as db:
			row = db.get(SessionRow, session_id)
			return Session.model_validate(row) if row else None

	async def delete_session(self, session_id: str) -> bool:
		with self._transaction() as db:
			result = db.execute(delete(SessionRow).where(SessionRow.id == session_id))
			db.commit()
			return result.rowcount == 1

	async def delete_user_sessions(self, user_id: str) -> int:
		with self._transaction() as db:
			result = db.execute(delete(SessionRow).where(SessionRow.user_id == user_id))
			db.commit()
			return result.rowcount

	# Bearer tokens

	async def create_token_record(self, record: TokenRecord) -> TokenRecord:
		with self._transaction() as db:
			row = AuthTokenRow(**record.model_dump())
			row.platform = record.platform.value
			db.add(row)
			db.commit()
			return TokenRecord.model_validate(row)

	async def get_token_by_access_hash(self, access_hash: str) -> TokenRecord | None:
		with self._transaction() as db:
			row = db.scalar(
				select(AuthTokenRow).where(AuthTokenRow.access_token_hash == access_hash)
			)
			return TokenRecord.model_validate(row) if row else None

	async def get_token_by_refresh_hash(self, refresh_hash: str) -> TokenRecord | None:
		with self._transaction() as db:
			row = db.scalar(
				select(AuthTokenRow).where(AuthTokenRow.refresh_token_hash == refresh_hash)
			)
			return TokenRecord.model_validate(row) if row else None

	async def exchange_refresh_token(self, refresh_hash: str) -> TokenRecord | None:
		with self._transaction() as db:
			row = db.scalar(
				select(AuthTokenRow).where(AuthTokenRow.refresh_token_hash == refresh_hash)
			)
			if row is None or row.revoked:
				return None
			record = TokenRecord.model_validate(row)
			result = db.execute(
				update(AuthTokenRow)
				.where(AuthTokenRow.id == row.id, AuthTokenRow.revoked.is_(False))
				.values(revoked=True, last_used_at=datetime.now(timezone.utc))
				.execution_options(synchronize_session=False)
			)
			db.commit()
			if result.rowcount != 1:
				return None
			return record

	async def revoke_token(self, token_id: str) -> bool:
		with self._transaction() as db:
			result = db.execute(
				update(AuthTokenRow)
				.where(AuthTokenRow.id == token_id, AuthTokenRow.revoked.is_(False))
				.values(revoked=True)
			)
			db.commit()
			return result.rowcount == 1

	async def revoke_user_tokens(self, user_id: str) -> int:
		with self._transaction() as db:
			result = db.execute(
				update(AuthTokenRow)
				.where(AuthTokenRow.user_id == user_id, AuthTokenRow.revoked.is_(False))
				.values(revoked=True)
			)
			db.commit()
			return result.rowcount
