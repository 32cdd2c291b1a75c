from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# --- Error ---


class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: str = ""
    details: dict | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# --- Domain ---


class DomainResponse(BaseModel):
    name: str
    version: str
    chain_id: int
    verifying_contract: str
    separator: str


# --- Splits ---


class LegRequest(BaseModel):
    participant: str
    amount: int


class CreateSplitRequest(BaseModel):
    payer: str
    token: str
    legs: list[LegRequest]
    deadline: int = 0
    meta_hash: str | None = None


class LegResponse(BaseModel):
    position: int
    participant: str
    amount: str
    approved: bool = False


class SplitResponse(BaseModel):
    split_id: int
    payer: str
    token: str
    total_amount: str
    created_at: int
    deadline: int
    meta_hash: str
    settled: bool


class SplitDetailResponse(SplitResponse):
    settled_at: int | None = None
    legs: list[LegResponse]


class RequiredAmountResponse(BaseModel):
    split_id: int
    participant: str
    amount: str
    is_participant: bool


class ApprovalDigestResponse(BaseModel):
    split_id: int
    participant: str
    amount: str
    deadline: int
    salt: str
    digest: str
    typed_data: dict


class SignatureModel(BaseModel):
    v: int
    r: str
    s: str


class SettleRequest(BaseModel):
    participants: list[str]
    amounts: list[int]
    deadlines: list[int]
    salts: list[str]
    signatures: list[SignatureModel]


class TransferItem(BaseModel):
    participant: str
    amount: str


class SettleResponse(BaseModel):
    split_id: int
    status: str = "settled"
    payer: str
    token: str
    total_amount: str
    settled_at: int
    transfers: list[TransferItem]


class EventItem(BaseModel):
    id: int
    event: str
    data: dict
    created_at: datetime | None = None


class EventsResponse(BaseModel):
    split_id: int
    events: list[EventItem]


# --- Token ledger ---


class BalanceResponse(BaseModel):
    token: str
    holder: str
    balance: str


class AllowanceResponse(BaseModel):
    token: str
    owner: str
    spender: str
    allowance: str


class MintRequest(BaseModel):
    holder: str
    amount: int = Field(..., gt=0)


class ApproveRequest(BaseModel):
    owner: str
    spender: str | None = None
    amount: int = Field(..., ge=0)


# --- Webhooks ---


class WebhookSetRequest(BaseModel):
    url: str
    events: list[str] | None = None


class WebhookResponse(BaseModel):
    id: str
    webhook_url: str
    secret: str | None = None
    events: list[str]
    active: bool


class WebhookDeleteResponse(BaseModel):
    status: str = "removed"


# --- Health ---


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "split-settlement-coordinator"
    version: str = "0.1.0"
