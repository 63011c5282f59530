"""
Database engine and session configuration.

DATABASE_URL selects the backing store. SQLite is the local default; any
SQLAlchemy URL (e.g. PostgreSQL) works in deployment.
"""

import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./taskhub.db")

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # SQLite connections are shared across the threadpool FastAPI uses for sync routes
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a session for the duration of one request."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
