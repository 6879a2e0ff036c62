from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from thumbreel.models.base import Base


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the sync engine.

    Account calls run in worker threads via asyncio.to_thread, so SQLite
    connections must be shareable across threads.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        echo=echo,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, class_=Session, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(engine)


@contextmanager
def get_sync_db(session_maker: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Transactional session scope: commit on success, rollback on error."""
    session = session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
