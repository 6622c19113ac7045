"""Engine and session plumbing for the balance ledger.

The API and the scheduler job each open their own sessions against the same
database; ``build_engine`` lets tests and one-off jobs bind another URL.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


SQLITE_BUSY_TIMEOUT_MS = 5000


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if _is_sqlite(database_url):
        connect_args["check_same_thread"] = False
    ledger_engine = create_engine(database_url, connect_args=connect_args)
    if _is_sqlite(database_url):
        event.listen(ledger_engine, "connect", _configure_sqlite_connection)
    return ledger_engine


def _configure_sqlite_connection(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    # Scheduler refreshes and API writes can overlap on the balances table.
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
    cursor.close()


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
