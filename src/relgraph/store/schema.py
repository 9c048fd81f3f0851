from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("bucket", String(64), primary_key=True),
    Column("doc_key", String(512), primary_key=True),  # e.g. user:1>user:2
    Column("type", String(64), nullable=False, index=True),
    Column("body", JSON, nullable=False),
    Column("expires_at", DateTime, nullable=True),
)

counters = Table(
    "counters",
    metadata,
    Column("bucket", String(64), primary_key=True),
    Column("counter_key", String(512), primary_key=True),
    Column("value", BigInteger, nullable=False),
)

locks = Table(
    "locks",
    metadata,
    Column("bucket", String(64), primary_key=True),
    Column("lock_key", String(512), primary_key=True),
    Column("token", String(36), nullable=False),
    Column("expires_at", DateTime, nullable=False),
)


def create_store_schema(engine: Engine) -> None:
    """Create the document, counter and lock tables if missing."""
    with engine.begin() as conn:
        metadata.create_all(conn)
