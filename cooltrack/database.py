from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cooltrack.core.config import get_database_url
from cooltrack.core.errors import ConflictError

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()

DATABASE_URL = ""
engine = None
_configured_database_url = None


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Sessions are handed across threads by the FastAPI threadpool.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def configure_database() -> None:
    global DATABASE_URL, engine, _configured_database_url

    database_url = get_database_url()

    if engine is not None and _configured_database_url == database_url:
        return

    engine = create_engine(database_url, **_engine_kwargs(database_url))
    SessionLocal.configure(bind=engine)
    DATABASE_URL = database_url
    _configured_database_url = database_url


configure_database()


def get_db():
    configure_database()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Optional[Session] = None):
    """
    Transactional scope. Commits and closes only a session it opened itself;
    a caller-supplied session is left for the caller to commit.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        yield db
        if owns_db:
            db.commit()
    except StaleDataError as exc:
        if owns_db:
            db.rollback()
        raise ConflictError("Record was modified by another request; reload and retry") from exc
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
