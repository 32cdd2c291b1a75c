from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.digest import Approval, Domain, approval_digest
from coordinator.errors import (
    AuthorizationError,
    DeadlineExpiredError,
    MalformedRequestError,
    SettlementError,
    SplitNotFoundError,
    StateConflictError,
    TransferFailedError,
)
from coordinator.events import PARTICIPANT_APPROVED, SPLIT_SETTLED, record_event
from coordinator.guard import NonReentrantGuard
from coordinator.ledger import SplitLedger
from coordinator.models import Split, SplitEvent
from coordinator.replay import ReplayGuard
from coordinator.signatures import SignatureTriple, verify_signature
from coordinator.token_ledger import LedgerFactory, SqlTokenLedger

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _lock(stmt):
    return stmt.with_for_update()


@dataclass(frozen=True)
class Transfer:
    participant: str
    amount: int


@dataclass
class SettlementResult:
    split_id: int
    payer: str
    token: str
    total_amount: int
    settled_at: int
    transfers: list[Transfer] = field(default_factory=list)
    events: list[SplitEvent] = field(default_factory=list)


class SettlementEngine:
    """Validates a full batch of participant approvals and settles a split.

    Nothing is written until every entry has passed every check; transfers
    then run inside the same transaction, so a refused transfer rolls back
    the approval flags as well. The guard spans the whole call.
    """

    def __init__(self, domain: Domain, *, ledger_factory: LedgerFactory = SqlTokenLedger) -> None:
        self.domain = domain
        self.ledger_factory = ledger_factory
        self._guard = NonReentrantGuard()

    @property
    def coordinator(self) -> str:
        """The spender identity participants grant allowances to."""
        return self.domain.verifying_contract

    def settle(
        self,
        session: Session,
        split_id: int,
        participants: Sequence[str],
        amounts: Sequence[int],
        deadlines: Sequence[int],
        salts: Sequence[bytes | str],
        signatures: Sequence[SignatureTriple],
    ) -> SettlementResult:
        try:
            with self._guard:
                with session.begin():
                    result = self._settle(session, split_id, participants, amounts, deadlines, salts, signatures)
        except SettlementError as exc:
            logger.warning("Settlement of split %s rejected: %s (%s)", split_id, exc.code, exc.message)
            raise
        logger.info(
            "Settled split %d: %d transfer(s) totalling %d to %s",
            result.split_id,
            len(result.transfers),
            result.total_amount,
            result.payer,
        )
        return result

    def _settle(
        self,
        session: Session,
        split_id: int,
        participants: Sequence[str],
        amounts: Sequence[int],
        deadlines: Sequence[int],
        salts: Sequence[bytes | str],
        signatures: Sequence[SignatureTriple],
    ) -> SettlementResult:
        now = _now()
        ledger = SplitLedger(session)
        replay = ReplayGuard(session)

        # 1. split exists and is still open
        split = session.execute(_lock(select(Split).where(Split.id == split_id))).scalar_one_or_none()
        if split is None:
            raise SplitNotFoundError(split_id)
        if split.settled:
            raise StateConflictError("split_already_settled", f"Split {split_id} is already settled")

        # 2. split-level deadline
        if split.deadline and now > split.deadline:
            raise DeadlineExpiredError(
                "split_expired",
                f"Split {split_id} expired at {split.deadline}",
                {"deadline": split.deadline, "now": now},
            )

        # 3. parallel arrays, covering every leg
        n = len(participants)
        if not (len(amounts) == len(deadlines) == len(salts) == len(signatures) == n):
            raise MalformedRequestError(
                "length_mismatch",
                "participants, amounts, deadlines, salts and signatures must have the same length",
            )
        leg_count = len(ledger.legs(split_id))
        if n != leg_count:
            raise MalformedRequestError(
                "batch_incomplete",
                f"Settlement must include all {leg_count} obligation(s) of split {split_id}, got {n}",
                {"expected": leg_count, "received": n},
            )

        approvals: list[tuple[Approval, SignatureTriple]] = []
        batch: set[str] = set()
        token_ledger = self.ledger_factory(session, split.token, self.coordinator)
        # Every check runs per entry, in order; the first failing entry decides the reason.
        for i in range(n):
            approval = Approval.build(
                participant=participants[i],
                split_id=split_id,
                token=split.token,
                payer=split.payer,
                amount=amounts[i],
                deadline=deadlines[i],
                salt=salts[i],
            )

            # 4. participant and amount match the recorded obligation
            required = ledger.required_amount(split_id, approval.participant)
            if required == 0:
                raise AuthorizationError(
                    "not_a_participant",
                    f"{approval.participant} is not a participant of split {split_id}",
                    {"index": i},
                )
            if approval.amount != required:
                raise AuthorizationError(
                    "amount_mismatch",
                    f"{approval.participant} owes {required}, approval claims {approval.amount}",
                    {"index": i, "required": str(required), "claimed": str(approval.amount)},
                )

            # 5. replay protection, across attempts and within this batch
            if approval.participant in batch or replay.is_approved(split_id, approval.participant):
                raise StateConflictError(
                    "already_approved",
                    f"{approval.participant} has already approved split {split_id}",
                    {"index": i},
                )
            batch.add(approval.participant)

            # 6. approval deadline and signature over the rebuilt digest
            if approval.deadline and now > approval.deadline:
                raise DeadlineExpiredError(
                    "approval_expired",
                    f"Approval of {approval.participant} expired at {approval.deadline}",
                    {"index": i, "deadline": approval.deadline, "now": now},
                )
            digest = approval_digest(self.domain, approval)
            if not verify_signature(digest, signatures[i], approval.participant):
                raise AuthorizationError(
                    "invalid_signature",
                    f"Signature does not recover to {approval.participant}",
                    {"index": i},
                )

            # 7. spending authority granted to the coordinator
            allowance = token_ledger.allowance_of(approval.participant, self.coordinator)
            if allowance < approval.amount:
                raise AuthorizationError(
                    "insufficient_allowance",
                    f"{approval.participant} allows {allowance}, needs {approval.amount}",
                    {"index": i, "allowance": str(allowance), "required": str(approval.amount)},
                )
            approvals.append((approval, signatures[i]))

        # 8. every entry is valid: commit replay flags
        events: list[SplitEvent] = []
        for approval, _sig in approvals:
            replay.mark_approved(split_id, approval.participant, now)
            events.append(
                record_event(
                    session,
                    split_id,
                    PARTICIPANT_APPROVED,
                    {"participant": approval.participant, "amount": str(approval.amount)},
                )
            )

        # 9. move the funds; any refusal rolls back the whole transaction
        transfers: list[Transfer] = []
        for i, (approval, _sig) in enumerate(approvals):
            try:
                ok = token_ledger.transfer_from(approval.participant, split.payer, approval.amount)
            except SettlementError:
                raise
            except Exception as exc:
                logger.exception("Token ledger raised during transfer from %s", approval.participant)
                raise TransferFailedError(
                    "transfer_failed",
                    f"Transfer from {approval.participant} raised: {exc}",
                    {"index": i},
                ) from exc
            if not ok:
                raise TransferFailedError(
                    "transfer_failed",
                    f"Transfer of {approval.amount} from {approval.participant} was refused",
                    {"index": i},
                )
            transfers.append(Transfer(participant=approval.participant, amount=approval.amount))

        # 10. terminal state
        split.settled = True
        split.settled_at = now
        session.add(split)
        events.append(record_event(session, split_id, SPLIT_SETTLED, {"payer": split.payer}))
        session.flush()

        return SettlementResult(
            split_id=split_id,
            payer=split.payer,
            token=split.token,
            total_amount=int(split.total_amount),
            settled_at=now,
            transfers=transfers,
            events=events,
        )
