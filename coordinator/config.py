from __future__ import annotations

import os
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def _get_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return int(val)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


class Settings:
    database_url: str = os.getenv("DATABASE_URL") or os.getenv(
        "SPLIT_COORDINATOR_DATABASE_URL", "sqlite:///./split_coordinator.db"
    )

    auto_create_schema: bool = _get_bool("SPLIT_COORDINATOR_AUTO_CREATE_SCHEMA", True)

    host: str = os.getenv("SPLIT_COORDINATOR_HOST", "127.0.0.1")
    port: int = _get_int("SPLIT_COORDINATOR_PORT", 3100)
    log_level: str = os.getenv("SPLIT_COORDINATOR_LOG_LEVEL", "info")

    # EIP-712 signing domain; the instance address must stay stable for the
    # lifetime of a deployment, it is both verifyingContract and the spender.
    domain_name: str = os.getenv("SPLIT_COORDINATOR_DOMAIN_NAME", "SplitSettlement")
    domain_version: str = os.getenv("SPLIT_COORDINATOR_DOMAIN_VERSION", "1")
    chain_id: int = _get_int("SPLIT_COORDINATOR_CHAIN_ID", 31337)
    instance_address: str = os.getenv(
        "SPLIT_COORDINATOR_INSTANCE_ADDRESS", "0x00000000000000000000000000000000005917c0"
    )

    # bcrypt hash of the operator API key; empty disables operator endpoints
    operator_key_hash: str = os.getenv("SPLIT_COORDINATOR_OPERATOR_KEY_HASH", "")

    # Webhooks
    webhook_timeout_seconds: int = _get_int("SPLIT_COORDINATOR_WEBHOOK_TIMEOUT", 10)
    webhook_max_retries: int = _get_int("SPLIT_COORDINATOR_WEBHOOK_MAX_RETRIES", 3)


settings = Settings()


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite:"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    class_=Session,
    expire_on_commit=False,
    autoflush=False,
    autobegin=False,
)


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
