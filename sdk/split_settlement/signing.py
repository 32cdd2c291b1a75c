from __future__ import annotations

import secrets

from eth_keys import keys


def _private_key(private_key: bytes | str) -> keys.PrivateKey:
    if isinstance(private_key, str):
        text = private_key[2:] if private_key.startswith("0x") else private_key
        private_key = bytes.fromhex(text)
    return keys.PrivateKey(private_key)


def address_of(private_key: bytes | str) -> str:
    """Checksummed address controlled by ``private_key``."""
    return _private_key(private_key).public_key.to_checksum_address()


def new_salt() -> str:
    """Fresh random 32-byte salt, so every approval digest is unique."""
    return "0x" + secrets.token_hex(32)


def sign_digest(private_key: bytes | str, digest: bytes | str) -> dict[str, object]:
    """Sign a 32-byte approval digest, returning the ``{v, r, s}`` triple.

    ``v`` is returned as 27/28. The signature is low-s, which is the only
    form the coordinator accepts.
    """
    if isinstance(digest, str):
        digest = bytes.fromhex(digest[2:] if digest.startswith("0x") else digest)
    if len(digest) != 32:
        raise ValueError("digest must be 32 bytes")
    sig = _private_key(private_key).sign_msg_hash(digest)
    return {"v": sig.v + 27, "r": f"0x{sig.r:064x}", "s": f"0x{sig.s:064x}"}
