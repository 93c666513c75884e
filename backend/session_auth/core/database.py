from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from session_auth.core.config import settings

# One engine per process; sessions are handed out per request via get_db.
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,   # checks stale connections
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
