from __future__ import annotations

from fastapi import Request

from coordinator.engine import SettlementEngine


def get_settlement_engine(request: Request) -> SettlementEngine:
    """The process-wide engine; one instance means one reentrancy guard."""
    return request.app.state.settlement_engine
