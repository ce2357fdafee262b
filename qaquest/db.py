from __future__ import annotations

import logging
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings
from .errors import PersistenceFailure

_log = logging.getLogger(__name__)


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # check_same_thread=False is needed only for SQLite with multiple threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


engine = make_engine(get_settings().database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class UnitOfWork:
    """Transaction scope over one session.

    Commits when the block exits normally; any exception (client disconnects
    included) rolls back every write made through the session since the last
    commit. SQLAlchemy errors surface as :class:`PersistenceFailure`.
    """

    def __init__(self, session: Session):
        self.session = session

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            try:
                self.session.commit()
            except SQLAlchemyError as err:
                self.session.rollback()
                _log.error("commit_failed error=%s", err)
                raise PersistenceFailure("Failed to commit transaction", str(err)) from err
            return False

        self.session.rollback()
        if isinstance(exc, SQLAlchemyError):
            _log.error("transaction_rolled_back error=%s", exc)
            raise PersistenceFailure("Database error, nothing was saved", str(exc)) from exc
        return False

    def add(self, obj) -> None:
        self.session.add(obj)

    def flush(self) -> None:
        self.session.flush()
