from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
from aislive.config import settings

_engine_kwargs: dict = {
    "pool_pre_ping": True,
    "pool_size": settings.DB_POOL_SIZE,
    "max_overflow": settings.DB_MAX_OVERFLOW,
    "connect_args": {
        "connect_timeout": settings.DB_CONNECT_TIMEOUT,
        "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
    },
}
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Enable PostGIS and create all tables. Safe to call on every start."""
    from aislive.models import Base  # noqa: F401  ensure all models are registered

    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        conn.commit()
    Base.metadata.create_all(bind=engine)
