from __future__ import annotations

from typing import Any, TypedDict


class Signature(TypedDict):
    v: int
    r: str
    s: str


class ApprovalEntry(TypedDict):
    participant: str
    amount: int
    deadline: int
    salt: str
    signature: Signature


class LegResponse(TypedDict, total=False):
    position: int
    participant: str
    amount: str
    approved: bool


class SplitResponse(TypedDict, total=False):
    split_id: int
    payer: str
    token: str
    total_amount: str
    created_at: int
    deadline: int
    meta_hash: str
    settled: bool
    settled_at: int | None
    legs: list[LegResponse]


class ApprovalDigestResponse(TypedDict, total=False):
    split_id: int
    participant: str
    amount: str
    deadline: int
    salt: str
    digest: str
    typed_data: dict[str, Any]


class TransferItem(TypedDict):
    participant: str
    amount: str


class SettleResponse(TypedDict, total=False):
    split_id: int
    status: str
    payer: str
    token: str
    total_amount: str
    settled_at: int
    transfers: list[TransferItem]
