# pharmorder/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from pharmorder.utils.settings import DATABASE_URL, DB_CONNECT_TIMEOUT, DB_POOL_TIMEOUT


def _engine_for(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # baza w pamięci istnieje tylko na jednym połączeniu
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=DB_POOL_TIMEOUT,
        connect_args={"connect_timeout": DB_CONNECT_TIMEOUT},
    )


engine = _engine_for(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
