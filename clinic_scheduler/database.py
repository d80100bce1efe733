# clinic_scheduler/database.py
from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings

DATABASE_URL: str | None = settings.DATABASE_URL
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not configured (check your .env).")


def make_engine(url: str, **kwargs) -> Engine:
    """
    Builds the engine for the given URL. SQLite gets the thread flag FastAPI
    needs; any other backend gets the pool options from settings.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)  # required by SQLite across threads
        return create_engine(
            url,
            connect_args=connect_args,
            pool_pre_ping=True,
            future=True,
            **kwargs,
        )
    # Postgres and friends
    return create_engine(
        url,
        pool_size=getattr(settings, "DB_POOL_SIZE", 2),
        max_overflow=getattr(settings, "DB_MAX_OVERFLOW", 5),
        pool_timeout=getattr(settings, "DB_POOL_TIMEOUT", 30),
        pool_recycle=getattr(settings, "DB_POOL_RECYCLE", 1800),  # 30 min
        pool_pre_ping=True,
        future=True,
        **kwargs,
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def init_db(bind: Engine | None = None):
    """
    Creates missing tables. Models are imported first so SQLAlchemy knows
    every table, including the partial unique indexes.
    """
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
