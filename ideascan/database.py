"""Database configuration and session management"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from ideascan.config import settings

_is_sqlite = "sqlite" in settings.DATABASE_URL

# Row locks (SELECT ... FOR UPDATE) are only honoured by PostgreSQL/MySQL.
# SQLite silently drops the clause, which is fine for tests and single-worker dev.
_pool_kwargs = {"connect_args": {"check_same_thread": False}} if _is_sqlite else {
    "pool_size": 20,
    "max_overflow": 40,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

engine = create_engine(settings.DATABASE_URL, **_pool_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for database sessions"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for queue workers. Callers commit explicitly; anything uncommitted is rolled back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
