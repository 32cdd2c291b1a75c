from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.digest import (
    ZERO_HASH,
    normalize_address,
    normalize_bytes32,
    require_uint256,
)
from coordinator.errors import MalformedRequestError
from coordinator.events import SPLIT_CREATED, record_event
from coordinator.models import Leg, Split
from coordinator.replay import ReplayGuard

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


@dataclass(frozen=True)
class LegInput:
    participant: str
    amount: int


class SplitLedger:
    """Authoritative store of splits and their obligations.

    Legs are kept as an ordered sequence (``position``) for enumeration and
    are unique per participant, so the required amount is a keyed lookup.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def create_split(
        self,
        *,
        payer: str,
        token: str,
        legs: Sequence[LegInput | tuple[str, int]],
        deadline: int = 0,
        meta_hash: bytes | str = ZERO_HASH,
    ) -> Split:
        payer = normalize_address(payer, "payer")
        token = normalize_address(token, "token")
        meta = "0x" + normalize_bytes32(meta_hash, "meta_hash").hex()
        require_uint256(deadline, "deadline")

        now = _now()
        if deadline and deadline < now:
            raise MalformedRequestError("deadline_in_past", f"Split deadline {deadline} is already in the past")
        if not legs:
            raise MalformedRequestError("no_legs", "A split needs at least one obligation")

        normalized: list[LegInput] = []
        seen: set[str] = set()
        for idx, leg in enumerate(legs):
            participant, amount = (leg.participant, leg.amount) if isinstance(leg, LegInput) else leg
            participant = normalize_address(participant, f"legs[{idx}].participant")
            require_uint256(amount, f"legs[{idx}].amount")
            if amount == 0:
                raise MalformedRequestError("zero_amount", f"legs[{idx}].amount must be positive")
            if participant in seen:
                raise MalformedRequestError(
                    "duplicate_participant",
                    f"{participant} appears in more than one leg",
                    {"participant": participant},
                )
            seen.add(participant)
            normalized.append(LegInput(participant=participant, amount=amount))

        total = require_uint256(sum(leg.amount for leg in normalized), "total_amount")

        split = Split(
            payer=payer,
            token=token,
            total_amount=total,
            created_at=now,
            deadline=deadline,
            meta_hash=meta,
            settled=False,
        )
        self.session.add(split)
        self.session.flush()

        replay = ReplayGuard(self.session)
        for position, leg in enumerate(normalized):
            self.session.add(Leg(split_id=split.id, position=position, participant=leg.participant, amount=leg.amount))
            replay.open(split.id, leg.participant)

        record_event(
            self.session,
            split.id,
            SPLIT_CREATED,
            {
                "payer": payer,
                "token": token,
                "total_amount": str(total),
                "deadline": deadline,
                "meta_hash": meta,
            },
        )
        self.session.flush()
        logger.info("Created split %d: payer=%s token=%s legs=%d total=%d", split.id, payer, token, len(normalized), total)
        return split

    def get_split(self, split_id: int) -> Split | None:
        return self.session.execute(select(Split).where(Split.id == split_id)).scalar_one_or_none()

    def legs(self, split_id: int) -> list[Leg]:
        return list(
            self.session.execute(select(Leg).where(Leg.split_id == split_id).order_by(Leg.position)).scalars().all()
        )

    def required_amount(self, split_id: int, participant: str) -> int:
        """Amount owed by ``participant``; 0 means "not a participant"."""
        try:
            participant = normalize_address(participant, "participant")
        except MalformedRequestError:
            return 0
        amount = self.session.execute(
            select(Leg.amount).where(Leg.split_id == split_id, Leg.participant == participant)
        ).scalar_one_or_none()
        return int(amount) if amount is not None else 0
