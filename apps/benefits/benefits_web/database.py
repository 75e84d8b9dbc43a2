"""Database setup utilities for the Benefits web app."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(32), nullable=False, default="employee"),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)

benefit_requests = Table(
    "benefit_requests",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("requester_id", ForeignKey("users.id"), nullable=False, index=True),
    Column("type", String(64), nullable=False),
    Column("amount_cents", Integer, nullable=False),
    Column("polo", String(120), nullable=False),
    Column("cpf", String(11), nullable=False),
    Column("dependents_json", Text, nullable=False, default="[]"),
    Column("invoices_json", Text, nullable=False, default="[]"),
    Column("status", String(16), nullable=False, default="created"),
    Column("idempotency_key", String(128), nullable=True),
    Column("decided_by", ForeignKey("users.id"), nullable=True),
    Column("decided_at", DateTime(timezone=True), nullable=True),
    Column("decision_note", Text, nullable=False, default=""),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    UniqueConstraint("requester_id", "idempotency_key", name="uq_request_idempotency"),
)

request_attachments = Table(
    "request_attachments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "request_id",
        ForeignKey("benefit_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("storage_path", String(512), nullable=False, unique=True),
    Column("file_name", String(255), nullable=False),
    Column("size_bytes", Integer, nullable=False),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)

audit_events = Table(
    "audit_events",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("request_id", Integer, nullable=True, index=True),
    Column("actor_id", Integer, nullable=True),
    Column("event_type", String(32), nullable=False),
    Column("payload_json", Text, nullable=False, default="{}"),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
)


def create_db_engine(database_url: str) -> Engine:
    """Return a SQLAlchemy engine for the provided URL."""

    return create_engine(database_url, future=True)


def init_schema(engine: Engine) -> None:
    """Create database tables if they do not exist."""

    metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Context manager that yields a SQLAlchemy :class:`Session`."""

    with Session(engine, future=True) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
