from __future__ import annotations

import secrets

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.auth import require_operator
from coordinator.config import get_session
from coordinator.events import ALL_EVENTS
from coordinator.models import WebhookConfig
from coordinator.schemas import WebhookDeleteResponse, WebhookResponse, WebhookSetRequest

router = APIRouter(dependencies=[Depends(require_operator)])


@router.put("/webhooks", response_model=WebhookResponse, tags=["Webhooks"])
def set_webhook(req: WebhookSetRequest, session: Session = Depends(get_session)) -> WebhookResponse:
    """Subscribe a URL to split events; re-putting the same URL updates it."""
    events = req.events if req.events else ALL_EVENTS
    unknown = sorted(set(events) - set(ALL_EVENTS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown event(s): {unknown}")

    with session.begin():
        existing = session.execute(
            select(WebhookConfig).where(WebhookConfig.url == req.url)
        ).scalar_one_or_none()

        if existing is not None:
            existing.events = events
            existing.active = True
            session.add(existing)
            return WebhookResponse(
                id=existing.id,
                webhook_url=existing.url,
                secret=None,
                events=existing.events,
                active=True,
            )

        webhook_secret = f"whsec_{secrets.token_hex(24)}"
        cfg = WebhookConfig(url=req.url, secret=webhook_secret, events=events, active=True)
        session.add(cfg)
        session.flush()

    return WebhookResponse(
        id=cfg.id,
        webhook_url=cfg.url,
        secret=webhook_secret,
        events=cfg.events,
        active=True,
    )


@router.delete("/webhooks/{webhook_id}", response_model=WebhookDeleteResponse, tags=["Webhooks"])
def delete_webhook(webhook_id: str, session: Session = Depends(get_session)) -> WebhookDeleteResponse:
    with session.begin():
        existing = session.execute(
            select(WebhookConfig).where(WebhookConfig.id == webhook_id)
        ).scalar_one_or_none()
        if existing is None:
            raise HTTPException(status_code=404, detail="Webhook not found")
        session.delete(existing)
    return WebhookDeleteResponse(status="removed")
