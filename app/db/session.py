from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.core.errors import ConflictError


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_settings()
    return create_engine(
        settings.database_url,  # fail fast if missing
        pool_pre_ping=True,
        future=True,
    )


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    return sessionmaker(
        bind=get_engine(),
        autoflush=False,
        autocommit=False,
        future=True,
    )


def get_db():
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything added inside the block as one transaction.

    Any exception rolls the whole unit back, so a state change and its
    audit/notification rows are either all persisted or none are.
    Unique-constraint violations surface as ConflictError.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Change conflicts with an existing record.") from e
    except Exception:
        db.rollback()
        raise
