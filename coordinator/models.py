from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _uuid() -> str:
    return str(uuid.uuid4())


class Uint256(TypeDecorator):
    """Unsigned 256-bit integer persisted as decimal text.

    BigInteger tops out at 2**63 - 1, which token amounts routinely exceed.
    """

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Base(DeclarativeBase):
    pass


class Split(Base):
    __tablename__ = "splits"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payer: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    total_amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deadline: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    meta_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    settled_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class Leg(Base):
    __tablename__ = "legs"

    split_id: Mapped[int] = mapped_column(Integer, ForeignKey("splits.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    participant: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False)

    __table_args__ = (UniqueConstraint("split_id", "participant", name="uq_leg_participant"),)


class Approval(Base):
    __tablename__ = "approvals"

    split_id: Mapped[int] = mapped_column(Integer, ForeignKey("splits.id"), primary_key=True)
    participant: Mapped[str] = mapped_column(String(42), primary_key=True)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class SplitEvent(Base):
    __tablename__ = "split_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    split_id: Mapped[int] = mapped_column(Integer, ForeignKey("splits.id"), nullable=False, index=True)
    event: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TokenBalance(Base):
    __tablename__ = "token_balances"

    token: Mapped[str] = mapped_column(String(42), primary_key=True)
    holder: Mapped[str] = mapped_column(String(42), primary_key=True)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class TokenAllowance(Base):
    __tablename__ = "token_allowances"

    token: Mapped[str] = mapped_column(String(42), primary_key=True)
    owner: Mapped[str] = mapped_column(String(42), primary_key=True)
    spender: Mapped[str] = mapped_column(String(42), primary_key=True)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class WebhookConfig(Base):
    __tablename__ = "webhook_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    url: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_body: Mapped[str] = mapped_column(Text, nullable=False)
    status_code: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
