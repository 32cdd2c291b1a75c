from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.errors import StateConflictError
from coordinator.models import Approval


class ReplayGuard:
    """Per-(split, participant) approval flags; false -> true exactly once."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, split_id: int, participant: str) -> Approval | None:
        return self.session.execute(
            select(Approval).where(Approval.split_id == split_id, Approval.participant == participant)
        ).scalar_one_or_none()

    def open(self, split_id: int, participant: str) -> None:
        self.session.add(Approval(split_id=split_id, participant=participant, approved=False))

    def is_approved(self, split_id: int, participant: str) -> bool:
        row = self._get(split_id, participant)
        return row is not None and row.approved

    def mark_approved(self, split_id: int, participant: str, at: int) -> None:
        row = self._get(split_id, participant)
        if row is None:
            raise StateConflictError(
                "approval_not_open",
                f"{participant} has no approval slot on split {split_id}",
                {"split_id": split_id, "participant": participant},
            )
        if row.approved:
            raise StateConflictError(
                "already_approved",
                f"{participant} has already approved split {split_id}",
                {"split_id": split_id, "participant": participant},
            )
        row.approved = True
        row.approved_at = at
        self.session.add(row)

    def flags(self, split_id: int) -> dict[str, bool]:
        rows = self.session.execute(select(Approval).where(Approval.split_id == split_id)).scalars().all()
        return {row.participant: row.approved for row in rows}
