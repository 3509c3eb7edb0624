import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

import order_webhooks.config  # noqa: F401  loads .env

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

# Seconds to wait for a connection or a sqlite write lock before failing the request
DATABASE_TIMEOUT = float(os.getenv("DATABASE_TIMEOUT", "5"))


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": DATABASE_TIMEOUT}}
    return {"pool_pre_ping": True, "pool_timeout": DATABASE_TIMEOUT}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()
