from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from . import config  # noqa: F401  (loads .env before the URL is read)

# ---------- Engine / Session ----------
DB_URL = os.getenv("CRYPTO_TAXREPORT_DB_URL", "sqlite:///./cryptotaxreport.db")

# echo=False to keep tests quiet
engine: Engine = create_engine(DB_URL, future=True, echo=False)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def init_db() -> None:
    """
    Create ORM tables (no-op for tables that already exist).
    """
    # Import models here to avoid circular imports
    from .models import Base  # noqa: WPS433 (import inside function)

    Base.metadata.create_all(bind=engine)


# convenience context manager used by the API
@contextmanager
def db_session() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
