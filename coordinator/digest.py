"""EIP-712 digests binding a participant's signature to one obligation.

The digest is ``keccak256(0x19 0x01 || domainSeparator || structHash)`` where
the struct is::

    Approval(address participant,uint256 splitId,address token,address payer,
             uint256 amount,uint256 deadline,bytes32 salt)

``token`` and ``payer`` are always taken from the stored split, never from
the caller, so an approval for one split cannot be replayed on another split
that happens to share the participant and amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eth_abi import encode
from eth_utils import is_address, keccak, to_checksum_address

from coordinator.errors import MalformedRequestError

UINT256_MAX = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "00" * 32

EIP712_DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
APPROVAL_TYPE = (
    "Approval(address participant,uint256 splitId,address token,address payer,"
    "uint256 amount,uint256 deadline,bytes32 salt)"
)

EIP712_DOMAIN_TYPEHASH = keccak(text=EIP712_DOMAIN_TYPE)
APPROVAL_TYPEHASH = keccak(text=APPROVAL_TYPE)


def normalize_address(value: str, field_name: str = "address", *, allow_zero: bool = False) -> str:
    """Return the EIP-55 checksummed form, rejecting malformed or zero addresses."""
    if not isinstance(value, str) or not is_address(value):
        raise MalformedRequestError("invalid_address", f"{field_name} is not a valid address: {value!r}")
    checksummed = to_checksum_address(value)
    if not allow_zero and checksummed == ZERO_ADDRESS:
        raise MalformedRequestError("zero_address", f"{field_name} must not be the zero address")
    return checksummed


def normalize_bytes32(value: bytes | str, field_name: str = "value") -> bytes:
    if isinstance(value, str):
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            value = bytes.fromhex(text)
        except ValueError:
            raise MalformedRequestError("invalid_bytes32", f"{field_name} is not hex encoded") from None
    if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
        raise MalformedRequestError("invalid_bytes32", f"{field_name} must be exactly 32 bytes")
    return bytes(value)


def require_uint256(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0 or value > UINT256_MAX:
        raise MalformedRequestError("invalid_uint256", f"{field_name} must be an integer in [0, 2**256)")
    return value


@dataclass(frozen=True)
class Domain:
    """Signing domain of one deployed coordinator.

    The separator is derived once here and never recomputed, so digests from
    one deployment (chain id + instance address) never verify on another.
    """

    name: str
    version: str
    chain_id: int
    verifying_contract: str
    separator: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "verifying_contract", normalize_address(self.verifying_contract, "verifying_contract")
        )
        require_uint256(self.chain_id, "chain_id")
        separator = keccak(
            encode(
                ["bytes32", "bytes32", "bytes32", "uint256", "address"],
                [
                    EIP712_DOMAIN_TYPEHASH,
                    keccak(text=self.name),
                    keccak(text=self.version),
                    self.chain_id,
                    self.verifying_contract,
                ],
            )
        )
        object.__setattr__(self, "separator", separator)

    def as_typed_data_domain(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


@dataclass(frozen=True)
class Approval:
    participant: str
    split_id: int
    token: str
    payer: str
    amount: int
    deadline: int
    salt: bytes

    @classmethod
    def build(
        cls,
        *,
        participant: str,
        split_id: int,
        token: str,
        payer: str,
        amount: int,
        deadline: int,
        salt: bytes | str,
    ) -> "Approval":
        """Validate and normalize every field before hashing."""
        return cls(
            participant=normalize_address(participant, "participant"),
            split_id=require_uint256(split_id, "split_id"),
            token=normalize_address(token, "token"),
            payer=normalize_address(payer, "payer"),
            amount=require_uint256(amount, "amount"),
            deadline=require_uint256(deadline, "deadline"),
            salt=normalize_bytes32(salt, "salt"),
        )


def approval_struct_hash(approval: Approval) -> bytes:
    return keccak(
        encode(
            ["bytes32", "address", "uint256", "address", "address", "uint256", "uint256", "bytes32"],
            [
                APPROVAL_TYPEHASH,
                approval.participant,
                approval.split_id,
                approval.token,
                approval.payer,
                approval.amount,
                approval.deadline,
                approval.salt,
            ],
        )
    )


def approval_digest(domain: Domain, approval: Approval) -> bytes:
    return keccak(b"\x19\x01" + domain.separator + approval_struct_hash(approval))


def approval_typed_data(domain: Domain, approval: Approval) -> dict[str, Any]:
    """The ``eth_signTypedData_v4`` document whose hash is :func:`approval_digest`."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "Approval": [
                {"name": "participant", "type": "address"},
                {"name": "splitId", "type": "uint256"},
                {"name": "token", "type": "address"},
                {"name": "payer", "type": "address"},
                {"name": "amount", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "salt", "type": "bytes32"},
            ],
        },
        "primaryType": "Approval",
        "domain": domain.as_typed_data_domain(),
        "message": {
            "participant": approval.participant,
            "splitId": approval.split_id,
            "token": approval.token,
            "payer": approval.payer,
            "amount": approval.amount,
            "deadline": approval.deadline,
            "salt": "0x" + approval.salt.hex(),
        },
    }
