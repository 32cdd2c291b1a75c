"""Python SDK for the Split Settlement Coordinator.

This package is intentionally small:
- Coordinator HTTP client helpers (create split, digest, settle).
- Participant-side signing of approval digests.
"""

from __future__ import annotations

__all__ = [
    "SplitCoordinatorClient",
    "address_of",
    "new_salt",
    "sign_digest",
]

from split_settlement.client import SplitCoordinatorClient
from split_settlement.signing import address_of, new_salt, sign_digest
