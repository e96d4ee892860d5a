from __future__ import annotations

import os

from sqlmodel import Session, create_engine


def database_url() -> str:
    explicit = os.getenv("DATABASE_URL", "").strip()
    if explicit:
        return explicit
    user = os.getenv("POSTGRES_USER", "starchallenge")
    password = os.getenv("POSTGRES_PASSWORD", "starchallenge")
    host = os.getenv("POSTGRES_HOST", "postgres")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "starchallenge")
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}"


engine = create_engine(database_url(), pool_pre_ping=True)


def create_session() -> Session:
    return Session(engine)
