from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./data/subtracker.db"


def get_database_url(override: str | None = None) -> str:
    return (override or "").strip() or os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


_ENGINES: dict[str, Engine] = {}


def get_engine(url: str | None = None) -> Engine:
    url = get_database_url(url)
    engine = _ENGINES.get(url)
    if engine is not None:
        return engine
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        db_file = url.replace("sqlite:///", "", 1)
        if db_file and db_file != ":memory:" and not url.startswith("sqlite:///:memory:"):
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, future=True, connect_args=connect_args)
    _ENGINES[url] = engine
    return engine


def get_session(url: str | None = None) -> Session:
    factory = sessionmaker(bind=get_engine(url), class_=Session, autoflush=False, autocommit=False)
    return factory()
