# (c) Copyright Datacraft, 2026
from sqlalchemy import create_engine, Engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession

from auth_gateway.config import Settings

from .base import Base


def make_engine(settings: Settings) -> Engine:
	url = str(settings.db_url)
	if url.startswith("sqlite"):
		return create_engine(
			url,
			poolclass=NullPool,
			connect_args={"check_same_thread": False, "timeout": 30},
		)
	return create_engine(url, poolclass=NullPool)


def make_session_factory(engine: Engine) -> sessionmaker[SQLAlchemySession]:
	return sessionmaker(engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
	Base.metadata.create_all(engine)
