from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coordinator.auth import require_operator
from coordinator.config import get_session
from coordinator.dependencies import get_settlement_engine
from coordinator.digest import normalize_address
from coordinator.engine import SettlementEngine
from coordinator.schemas import AllowanceResponse, ApproveRequest, BalanceResponse, MintRequest
from coordinator.token_ledger import SqlTokenLedger


router = APIRouter()


@router.get("/tokens/{token}/balances/{holder}", response_model=BalanceResponse, tags=["Tokens"])
def balance(
    token: str,
    holder: str,
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> BalanceResponse:
    with session.begin():
        ledger = SqlTokenLedger(session, token, engine.coordinator)
        amount = ledger.balance_of(holder)
    return BalanceResponse(token=ledger.token, holder=normalize_address(holder, "holder"), balance=str(amount))


@router.get("/tokens/{token}/allowances/{owner}/{spender}", response_model=AllowanceResponse, tags=["Tokens"])
def allowance(
    token: str,
    owner: str,
    spender: str,
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> AllowanceResponse:
    with session.begin():
        ledger = SqlTokenLedger(session, token, engine.coordinator)
        amount = ledger.allowance_of(owner, spender)
    return AllowanceResponse(
        token=ledger.token,
        owner=normalize_address(owner, "owner"),
        spender=normalize_address(spender, "spender"),
        allowance=str(amount),
    )


@router.post(
    "/tokens/{token}/mint",
    response_model=BalanceResponse,
    tags=["Tokens"],
    dependencies=[Depends(require_operator)],
)
def mint(
    token: str,
    req: MintRequest,
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> BalanceResponse:
    with session.begin():
        ledger = SqlTokenLedger(session, token, engine.coordinator)
        new_balance = ledger.mint(req.holder, req.amount)
    return BalanceResponse(token=ledger.token, holder=normalize_address(req.holder, "holder"), balance=str(new_balance))


@router.post(
    "/tokens/{token}/approve",
    response_model=AllowanceResponse,
    tags=["Tokens"],
    dependencies=[Depends(require_operator)],
)
def approve(
    token: str,
    req: ApproveRequest,
    engine: SettlementEngine = Depends(get_settlement_engine),
    session: Session = Depends(get_session),
) -> AllowanceResponse:
    """Grant an allowance on the owner's behalf; spender defaults to this coordinator."""
    spender = req.spender or engine.coordinator
    with session.begin():
        ledger = SqlTokenLedger(session, token, engine.coordinator)
        ledger.approve(req.owner, spender, req.amount)
        amount = ledger.allowance_of(req.owner, spender)
    return AllowanceResponse(
        token=ledger.token,
        owner=normalize_address(req.owner, "owner"),
        spender=normalize_address(spender, "spender"),
        allowance=str(amount),
    )
