from __future__ import annotations

import logging
from dataclasses import dataclass

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from coordinator.errors import MalformedRequestError

logger = logging.getLogger(__name__)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2


@dataclass(frozen=True)
class SignatureTriple:
    """Recoverable secp256k1 signature; ``v`` may be 27/28 or 0/1."""

    v: int
    r: int
    s: int

    @classmethod
    def from_hex(cls, v: int, r: str | int, s: str | int) -> "SignatureTriple":
        try:
            return cls(v=int(v), r=_as_int(r), s=_as_int(s))
        except (TypeError, ValueError):
            raise MalformedRequestError("invalid_signature_encoding", "Signature components must be integers or hex strings") from None

    def to_dict(self) -> dict:
        return {"v": self.v, "r": f"0x{self.r:064x}", "s": f"0x{self.s:064x}"}


def _as_int(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


def recover_signer(digest: bytes, signature: SignatureTriple) -> str | None:
    """Recover the checksummed signer address, or ``None`` if unrecoverable.

    High-s signatures are refused so that a signature and its mirror image
    (n - s, flipped v) cannot both be accepted for the same digest.
    """
    v = signature.v - 27 if signature.v in (27, 28) else signature.v
    if v not in (0, 1):
        return None
    if not 0 < signature.r < SECP256K1_N:
        return None
    if not 0 < signature.s <= SECP256K1_HALF_N:
        return None
    if len(digest) != 32:
        return None
    try:
        public_key = keys.Signature(vrs=(v, signature.r, signature.s)).recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError, ValueError):
        logger.debug("Signature recovery failed", exc_info=True)
        return None
    return public_key.to_checksum_address()


def verify_signature(digest: bytes, signature: SignatureTriple, expected: str) -> bool:
    signer = recover_signer(digest, signature)
    if signer is None:
        return False
    return signer.lower() == expected.lower()
