from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import os

from .config import DATABASE_URL

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

Base = declarative_base()

def create_db_engine(database_url: str = DATABASE_URL):
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    if database_url in IN_MEMORY_URLS:
        # One shared connection, otherwise every session sees an empty database
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # Ensure the data directory exists for file-backed databases
    db_dir = os.path.dirname(database_url.replace("sqlite:///", ""))
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)

    return create_engine(database_url, connect_args={"check_same_thread": False})

def create_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

def init_db(engine):
    # Import models so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
