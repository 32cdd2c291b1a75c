from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from split_settlement.signing import address_of, new_salt, sign_digest
from split_settlement.types import ApprovalDigestResponse, ApprovalEntry, SettleResponse, SplitResponse


def _join(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


@dataclass
class SplitCoordinatorClient:
    """Synchronous client for the Split Settlement Coordinator REST API."""

    base_url: str
    operator_key: str | None = None
    timeout_s: float = 10.0
    default_headers: dict[str, str] = field(default_factory=dict)

    def _headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        h: dict[str, str] = {**self.default_headers}
        if self.operator_key:
            h["Authorization"] = f"Bearer {self.operator_key}"
        h["X-Request-Id"] = f"req_{uuid.uuid4().hex[:12]}"
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    def _post(self, url: str, payload: dict[str, Any], *, idempotency_key: str | None = None) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        headers = self._headers(idempotency_key=idempotency_key)
        with httpx.Client(timeout=self.timeout_s) as c:
            r = c.post(url, content=body, headers={**headers, "Content-Type": "application/json"})
            r.raise_for_status()
            return r.json()

    def _get(self, url: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout_s) as c:
            r = c.get(url, params=params, headers=self._headers())
            r.raise_for_status()
            return r.json()

    # --- Domain ---

    def domain(self) -> dict[str, Any]:
        return self._get(_join(self.base_url, "/v1/domain"))

    # --- Splits ---

    def create_split(
        self,
        *,
        payer: str,
        token: str,
        legs: list[tuple[str, int]],
        deadline: int = 0,
        meta_hash: str | None = None,
        idempotency_key: str | None = None,
    ) -> SplitResponse:
        url = _join(self.base_url, "/v1/splits")
        payload: dict[str, Any] = {
            "payer": payer,
            "token": token,
            "legs": [{"participant": p, "amount": a} for p, a in legs],
            "deadline": deadline,
        }
        if meta_hash is not None:
            payload["meta_hash"] = meta_hash
        return self._post(url, payload, idempotency_key=idempotency_key)

    def get_split(self, *, split_id: int) -> SplitResponse:
        return self._get(_join(self.base_url, f"/v1/splits/{split_id}"))

    def required_amount(self, *, split_id: int, participant: str) -> int:
        url = _join(self.base_url, f"/v1/splits/{split_id}/required-amount")
        return int(self._get(url, params={"participant": participant})["amount"])

    def approval_digest(self, *, split_id: int, participant: str, salt: str, deadline: int = 0) -> ApprovalDigestResponse:
        url = _join(self.base_url, f"/v1/splits/{split_id}/approval-digest")
        return self._get(url, params={"participant": participant, "salt": salt, "deadline": deadline})

    def sign_approval(self, *, split_id: int, private_key: bytes | str, deadline: int = 0) -> ApprovalEntry:
        """Fetch this participant's digest and sign it locally.

        Returns one settlement entry: participant, amount, deadline, salt and
        signature. The private key never leaves the process.
        """
        participant = address_of(private_key)
        salt = new_salt()
        info = self.approval_digest(split_id=split_id, participant=participant, salt=salt, deadline=deadline)
        return {
            "participant": participant,
            "amount": int(info["amount"]),
            "deadline": deadline,
            "salt": salt,
            "signature": sign_digest(private_key, info["digest"]),
        }

    def settle_split(
        self,
        *,
        split_id: int,
        approvals: list[ApprovalEntry],
        idempotency_key: str | None = None,
    ) -> SettleResponse:
        """Submit every participant's approval in one all-or-nothing batch."""
        url = _join(self.base_url, f"/v1/splits/{split_id}/settle")
        payload = {
            "participants": [a["participant"] for a in approvals],
            "amounts": [a["amount"] for a in approvals],
            "deadlines": [a["deadline"] for a in approvals],
            "salts": [a["salt"] for a in approvals],
            "signatures": [a["signature"] for a in approvals],
        }
        return self._post(url, payload, idempotency_key=idempotency_key)

    def get_events(self, *, split_id: int) -> dict[str, Any]:
        return self._get(_join(self.base_url, f"/v1/splits/{split_id}/events"))

    # --- Tokens ---

    def balance_of(self, *, token: str, holder: str) -> int:
        url = _join(self.base_url, f"/v1/tokens/{token}/balances/{holder}")
        return int(self._get(url)["balance"])

    def allowance_of(self, *, token: str, owner: str, spender: str) -> int:
        url = _join(self.base_url, f"/v1/tokens/{token}/allowances/{owner}/{spender}")
        return int(self._get(url)["allowance"])

    def mint(self, *, token: str, holder: str, amount: int) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/tokens/{token}/mint")
        return self._post(url, {"holder": holder, "amount": amount})

    def approve(self, *, token: str, owner: str, amount: int, spender: str | None = None) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/tokens/{token}/approve")
        payload: dict[str, Any] = {"owner": owner, "amount": amount}
        if spender is not None:
            payload["spender"] = spender
        return self._post(url, payload)
