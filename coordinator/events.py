from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from threading import Thread
from time import sleep
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.config import SessionLocal, settings
from coordinator.models import SplitEvent, WebhookConfig

logger = logging.getLogger(__name__)

SPLIT_CREATED = "split.created"
PARTICIPANT_APPROVED = "split.participant_approved"
SPLIT_SETTLED = "split.settled"

ALL_EVENTS = [SPLIT_CREATED, PARTICIPANT_APPROVED, SPLIT_SETTLED]

RETRY_BACKOFF = [5, 25, 125]


def record_event(session: Session, split_id: int, event: str, data: dict[str, Any]) -> SplitEvent:
    """Append an event inside the caller's transaction; it vanishes on rollback."""
    row = SplitEvent(split_id=split_id, event=event, data=data)
    session.add(row)
    return row


def _sign_payload(secret: str, body: bytes) -> str:
    sig = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={sig}"


def _deliver(url: str, secret: str, event: str, payload: dict) -> None:
    body = json.dumps(payload).encode("utf-8")
    signature = _sign_payload(secret, body)
    delivery_id = f"evt_{uuid.uuid4().hex[:12]}"
    headers = {
        "Content-Type": "application/json",
        "X-Split-Signature": signature,
        "X-Split-Event": event,
        "X-Split-Delivery": delivery_id,
    }

    retries = settings.webhook_max_retries
    for attempt in range(1 + retries):
        try:
            resp = httpx.post(url, content=body, headers=headers, timeout=settings.webhook_timeout_seconds)
            if 200 <= resp.status_code < 300:
                return
            logger.warning("Webhook delivery to %s returned %s (attempt %d)", url, resp.status_code, attempt + 1)
        except httpx.HTTPError:
            logger.warning("Webhook delivery to %s failed (attempt %d)", url, attempt + 1, exc_info=True)
        if attempt < retries:
            backoff = RETRY_BACKOFF[attempt] if attempt < len(RETRY_BACKOFF) else RETRY_BACKOFF[-1]
            sleep(backoff)
    logger.error("Giving up on webhook %s for %s after %d attempts", delivery_id, url, 1 + retries)


def build_payload(event: SplitEvent) -> dict:
    return {
        "event": event.event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {"split_id": event.split_id, **event.data},
    }


def fire_webhook_events(events: Iterable[SplitEvent]) -> None:
    """Deliver committed events to every active subscription that wants them."""
    events = list(events)
    if not events:
        return

    db = SessionLocal()
    try:
        with db.begin():
            configs = (
                db.execute(select(WebhookConfig).where(WebhookConfig.active.is_(True)))
                .scalars()
                .all()
            )
    finally:
        db.close()

    for event in events:
        payload = build_payload(event)
        for cfg in configs:
            if cfg.events and event.event not in cfg.events:
                continue
            thread = Thread(target=_deliver, args=(cfg.url, cfg.secret, event.event, payload), daemon=True)
            thread.start()
