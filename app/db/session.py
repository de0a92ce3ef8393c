from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings


def build_engine(url: str, **kwargs: Any) -> Engine:
    """
    Engine for the contract store. SQLite connections are shared across the
    request thread pool, so the same-thread check is turned off there.
    """
    if url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, future=True, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    # services commit their own units of work; nothing flushes behind their back
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


settings = get_settings()

engine = build_engine(settings.database_url)

SessionLocal = build_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
