from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_core.config import settings
from whatsapp_core.models import Base


def normalize_db_url(url: str) -> str:
    if url.startswith("postgresql://") and "psycopg" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str) -> Engine:
    url = normalize_db_url(url)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database.
            from sqlalchemy.pool import StaticPool

            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables. Existing tables are left untouched."""
    Base.metadata.create_all(engine)


_db_url = settings.DATABASE_URL or ""

if _db_url:
    engine = create_db_engine(_db_url)
    SessionLocal = make_session_factory(engine)
else:
    engine = None  # type: ignore[assignment]
    SessionLocal = None  # type: ignore[assignment]


@contextmanager
def db_session(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    factory = factory or SessionLocal
    if factory is None:
        raise RuntimeError("DATABASE_URL is not set. Set it in .env or environment.")
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
