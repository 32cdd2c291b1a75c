from __future__ import annotations

import bcrypt
from fastapi import Header, HTTPException

from coordinator.config import settings


def _check_api_key(api_key: str, api_key_hash: str) -> bool:
    try:
        return bcrypt.checkpw(api_key.encode("utf-8"), api_key_hash.encode("utf-8"))
    except ValueError:
        return False


def hash_operator_key(api_key: str, rounds: int = 12) -> str:
    """Produce the value for SPLIT_COORDINATOR_OPERATOR_KEY_HASH."""
    return bcrypt.hashpw(api_key.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


async def require_operator(authorization: str | None = Header(default=None)) -> None:
    if not settings.operator_key_hash:
        raise HTTPException(status_code=403, detail="Operator endpoints are disabled on this instance")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header. Use: Bearer <operator_key>",
        )
    api_key = authorization.split(" ", 1)[1].strip()
    if not _check_api_key(api_key, settings.operator_key_hash):
        raise HTTPException(status_code=401, detail="Invalid operator key")
