"""Rejection reasons surfaced by split creation and settlement.

Every failure carries a stable machine-readable ``code`` plus a category;
the HTTP layer maps the category to a status code. None of these are
retried internally, the caller resubmits a corrected request.
"""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    category = "malformed_request"
    status_code = 400

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class MalformedRequestError(SettlementError):
    category = "malformed_request"
    status_code = 400


class SplitNotFoundError(MalformedRequestError):
    status_code = 404

    def __init__(self, split_id: int) -> None:
        super().__init__("split_not_found", f"Split {split_id} does not exist", {"split_id": split_id})


class AuthorizationError(SettlementError):
    category = "authorization_failure"
    status_code = 403


class DeadlineExpiredError(SettlementError):
    category = "temporal_failure"
    status_code = 410


class StateConflictError(SettlementError):
    category = "state_conflict"
    status_code = 409


class ReentrantCallError(StateConflictError):
    def __init__(self) -> None:
        super().__init__("reentrant_call", "Settlement is already in progress on this call stack")


class TransferFailedError(SettlementError):
    category = "external_dependency_failure"
    status_code = 502
