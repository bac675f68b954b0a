# db.py
# Role: Database bootstrap for the finance tracker.
#       Defines the SQLAlchemy engine, session factory, and declarative Base.
#       Also ensures the on-disk database directory exists for the default SQLite URL.

"""
Database setup for the finance tracker.

- Uses DATABASE_URL from app.config (defaults to <project_root>/database/finance.db)
- Ensures the 'database' folder exists when the default SQLite file is used.
"""

import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import DATABASE_URL, DATABASE_ECHO, DB_DIR

if DATABASE_URL.startswith("sqlite:///") and DB_DIR in DATABASE_URL:
    os.makedirs(DB_DIR, exist_ok=True)  # ensure folder exists

# For SQLite, we need check_same_thread=False for FastAPI (threaded request handling)
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    echo=DATABASE_ECHO,
)


def enable_sqlite_foreign_keys(target_engine):
    """SQLite ignores FOREIGN KEY constraints unless asked per connection."""
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)

# Standard session factory used via dependency injection (see app/deps.py:get_db)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Declarative base class for ORM models
Base = declarative_base()
