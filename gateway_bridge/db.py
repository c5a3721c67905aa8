from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

class Base(DeclarativeBase):
    pass

def _is_memory(url) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")

def make_engine(db_url: str):
    if _is_memory(make_url(db_url)):
        # in-memory databases must share one connection across sessions
        return create_engine(db_url, future=True, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(db_url, future=True)

def ensure_sqlite_dir(db_url: str):
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and not _is_memory(url):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

def make_sessionmaker(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
