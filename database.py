import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import settings
from errors import StoreFailure
from models import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections get foreign keys switched on and every transaction
    opened with ``BEGIN IMMEDIATE``, so two writers never interleave between
    a lending check and the write it guards.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    engine = create_engine(database_url, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy instead of pysqlite.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_db(bind: Engine) -> None:
    Base.metadata.create_all(bind, checkfirst=True)


engine = make_engine(settings.database_url)
Session = sessionmaker(bind=engine, expire_on_commit=False)


def get_db():
    db = Session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db):
    """Commit everything done inside the block, or nothing.

    Domain errors roll back and propagate as they are; store errors roll back
    and surface as ``StoreFailure``.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Store failure, transaction rolled back")
        raise StoreFailure("The library store is unavailable, nothing was changed") from exc
    except Exception:
        db.rollback()
        raise
