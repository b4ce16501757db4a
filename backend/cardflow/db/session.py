from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cardflow.core import config


def _connect_args(url: str) -> dict:
    # SQLite connections are used from FastAPI's threadpool, not the thread that opened them
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


engine = create_engine(config.DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args(config.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
