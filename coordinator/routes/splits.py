from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.config import get_session
from coordinator.dependencies import get_settlement_engine
from coordinator.digest import ZERO_HASH, Approval, approval_digest, approval_typed_data, normalize_address
from coordinator.engine import SettlementEngine
from coordinator.errors import AuthorizationError, SplitNotFoundError
from coordinator.events import fire_webhook_events
from coordinator.ledger import LegInput, SplitLedger
from coordinator.models import Split, SplitEvent
from coordinator.replay import ReplayGuard
from coordinator.schemas import (
    ApprovalDigestResponse,
    CreateSplitRequest,
    EventItem,
    EventsResponse,
    LegResponse,
    RequiredAmountResponse,
    SettleRequest,
    SettleResponse,
    SplitDetailResponse,
    SplitResponse,
    TransferItem,
)
from coordinator.signatures import SignatureTriple


router = APIRouter()


def _split_response(split: Split) -> SplitResponse:
    return SplitResponse(
        split_id=split.id,
        payer=split.payer,
        token=split.token,
        total_amount=str(split.total_amount),
        created_at=split.created_at,
        deadline=split.deadline,
        meta_hash=split.meta_hash,
        settled=split.settled,
    )


@router.post("/splits", status_code=201, response_model=SplitResponse, tags=["Splits"])
def create_split(req: CreateSplitRequest, session: Session = Depends(get_session)) -> SplitResponse:
    with session.begin():
        ledger = SplitLedger(session)
        split = ledger.create_split(
            payer=req.payer,
            token=req.token,
            legs=[LegInput(participant=leg.participant, amount=leg.amount) for leg in req.legs],
            deadline=req.deadline,
            meta_hash=req.meta_hash or ZERO_HASH,
        )
        created = session.execute(select(SplitEvent).where(SplitEvent.split_id == split.id)).scalars().all()

    fire_webhook_events(created)
    return _split_response(split)


@router.get("/splits/{split_id}", response_model=SplitDetailResponse, tags=["Splits"])
def get_split(split_id: int, session: Session = Depends(get_session)) -> SplitDetailResponse:
    with session.begin():
        ledger = SplitLedger(session)
        split = ledger.get_split(split_id)
        if split is None:
            raise SplitNotFoundError(split_id)
        flags = ReplayGuard(session).flags(split_id)
        legs = [
            LegResponse(
                position=leg.position,
                participant=leg.participant,
                amount=str(leg.amount),
                approved=flags.get(leg.participant, False),
            )
            for leg in ledger.legs(split_id)
        ]
    return SplitDetailResponse(**_split_response(split).model_dump(), settled_at=split.settled_at, legs=legs)


@router.get("/splits/{split_id}/required-amount", response_model=RequiredAmountResponse, tags=["Splits"])
def required_amount(
    split_id: int,
    participant: str = Query(...),
    session: Session = Depends(get_session),
) -> RequiredAmountResponse:
    with session.begin():
        amount = SplitLedger(session).required_amount(split_id, participant)
    return RequiredAmountResponse(
        split_id=split_id,
        participant=participant,
        amount=str(amount),
        is_participant=amount > 0,
    )


@router.get("/splits/{split_id}/approval-digest", response_model=ApprovalDigestResponse, tags=["Splits"])
def approval_digest_for(
    split_id: int,
    participant: str = Query(...),
    salt: str = Query(...),
    deadline: int = Query(0, ge=0),
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> ApprovalDigestResponse:
    """Digest and EIP-712 document a participant signs for their leg."""
    with session.begin():
        ledger = SplitLedger(session)
        split = ledger.get_split(split_id)
        if split is None:
            raise SplitNotFoundError(split_id)
        participant = normalize_address(participant, "participant")
        amount = ledger.required_amount(split_id, participant)
        if amount == 0:
            raise AuthorizationError("not_a_participant", f"{participant} is not a participant of split {split_id}")
        approval = Approval.build(
            participant=participant,
            split_id=split_id,
            token=split.token,
            payer=split.payer,
            amount=amount,
            deadline=deadline,
            salt=salt,
        )

    return ApprovalDigestResponse(
        split_id=split_id,
        participant=approval.participant,
        amount=str(amount),
        deadline=approval.deadline,
        salt="0x" + approval.salt.hex(),
        digest="0x" + approval_digest(engine.domain, approval).hex(),
        typed_data=approval_typed_data(engine.domain, approval),
    )


@router.post("/splits/{split_id}/settle", response_model=SettleResponse, tags=["Splits"])
def settle_split(
    split_id: int,
    req: SettleRequest,
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> SettleResponse:
    signatures = [SignatureTriple.from_hex(sig.v, sig.r, sig.s) for sig in req.signatures]
    result = engine.settle(
        session,
        split_id,
        req.participants,
        req.amounts,
        req.deadlines,
        req.salts,
        signatures,
    )

    fire_webhook_events(result.events)

    return SettleResponse(
        split_id=result.split_id,
        payer=result.payer,
        token=result.token,
        total_amount=str(result.total_amount),
        settled_at=result.settled_at,
        transfers=[TransferItem(participant=t.participant, amount=str(t.amount)) for t in result.transfers],
    )


@router.get("/splits/{split_id}/events", response_model=EventsResponse, tags=["Splits"])
def list_events(split_id: int, session: Session = Depends(get_session)) -> EventsResponse:
    with session.begin():
        if SplitLedger(session).get_split(split_id) is None:
            raise SplitNotFoundError(split_id)
        rows = (
            session.execute(select(SplitEvent).where(SplitEvent.split_id == split_id).order_by(SplitEvent.id))
            .scalars()
            .all()
        )
    return EventsResponse(
        split_id=split_id,
        events=[EventItem(id=e.id, event=e.event, data=e.data, created_at=e.created_at) for e in rows],
    )
