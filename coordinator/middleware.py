from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import delete, select
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from coordinator.config import SessionLocal
from coordinator.models import IdempotencyRecord
from coordinator.schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

IDEMPOTENCY_TTL = timedelta(hours=24)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Ensures every request/response carries an X-Request-Id header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response


def _request_hash(request: Request, body: bytes) -> str:
    # A key replayed against another split's endpoint is a different request.
    h = hashlib.sha256()
    h.update(request.url.path.encode("utf-8"))
    h.update(b"\n")
    h.update(body)
    return h.hexdigest()


def _find_record(idem_key: str) -> IdempotencyRecord | None:
    """Purge expired keys, then return the live record for ``idem_key``."""
    session = SessionLocal()
    try:
        with session.begin():
            session.execute(delete(IdempotencyRecord).where(IdempotencyRecord.expires_at < datetime.now(timezone.utc)))
            return session.execute(
                select(IdempotencyRecord).where(IdempotencyRecord.key == idem_key)
            ).scalar_one_or_none()
    finally:
        session.close()


def _store_record(idem_key: str, request_hash: str, body: bytes, status_code: int) -> None:
    session = SessionLocal()
    try:
        with session.begin():
            session.add(
                IdempotencyRecord(
                    key=idem_key,
                    request_hash=request_hash,
                    response_body=body.decode("utf-8"),
                    status_code=status_code,
                    expires_at=datetime.now(timezone.utc) + IDEMPOTENCY_TTL,
                )
            )
    finally:
        session.close()


async def _drain(response) -> bytes:
    chunks: list[bytes] = []
    async for chunk in response.body_iterator:
        chunks.append(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
    return b"".join(chunks)


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Replays the stored 2xx response for a repeated Idempotency-Key.

    Lets clients retry split creation or settlement after a network error
    without creating a second split or tripping the already-settled check.
    Rejections are not stored, so a corrected retry may reuse the key.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        idem_key = request.headers.get("idempotency-key")
        if request.method != "POST" or not idem_key:
            return await call_next(request)

        request_hash = _request_hash(request, await request.body())
        record = _find_record(idem_key)

        if record is not None and record.request_hash != request_hash:
            logger.warning("Idempotency key %s reused with a different request", idem_key)
            err = ErrorResponse(
                error=ErrorDetail(
                    code="idempotency_conflict",
                    message="Idempotency key reused with a different request body",
                    request_id=getattr(request.state, "request_id", ""),
                )
            )
            return JSONResponse(status_code=409, content=err.model_dump())
        if record is not None:
            return Response(
                content=record.response_body,
                status_code=record.status_code,
                media_type="application/json",
                headers={"Idempotent-Replay": "true"},
            )

        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            return response

        body = await _drain(response)
        _store_record(idem_key, request_hash, body, response.status_code)
        return Response(
            content=body,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
