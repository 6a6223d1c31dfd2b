import os
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool


DEFAULT_DATABASE_URL = "sqlite:///./smsledger.sqlite3"

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """
    Hosted Postgres often comes as postgres:// or postgresql:// URLs. Rewrite
    them so SQLAlchemy uses the psycopg driver explicitly.
    """
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def engine_options(url: str) -> Dict[str, Any]:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    # FastAPI runs sync endpoints on a thread pool.
    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # every connection to an in-memory database is a new, empty database
        options["poolclass"] = StaticPool
    return options


def make_engine(url: str) -> Engine:
    url = normalize_database_url(url)
    return create_engine(url, **engine_options(url))


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))

engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
