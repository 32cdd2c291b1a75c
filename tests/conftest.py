from __future__ import annotations

import importlib
import os
import sys
from pathlib import Path

import pytest
from eth_keys import keys
from eth_utils import to_checksum_address


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from coordinator.auth import hash_operator_key  # noqa: E402
from coordinator.digest import Approval, Domain, approval_digest  # noqa: E402
from coordinator.engine import SettlementEngine  # noqa: E402
from coordinator.signatures import SignatureTriple  # noqa: E402


COORDINATOR_ADDRESS = to_checksum_address("0x000000000000000000000000000000000000c0de")
TOKEN = to_checksum_address("0x00000000000000000000000000000000000070ce")
CHAIN_ID = 31337
OPERATOR_KEY = "op_test_operator_key"


@pytest.fixture()
def coordinator_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    # Isolated DB per test.
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("SPLIT_COORDINATOR_DATABASE_URL", f"sqlite:///{tmp_path / 'coordinator.db'}")
    monkeypatch.setenv("SPLIT_COORDINATOR_AUTO_CREATE_SCHEMA", "true")
    monkeypatch.setenv("SPLIT_COORDINATOR_CHAIN_ID", str(CHAIN_ID))
    monkeypatch.setenv("SPLIT_COORDINATOR_INSTANCE_ADDRESS", COORDINATOR_ADDRESS)
    monkeypatch.setenv("SPLIT_COORDINATOR_WEBHOOK_MAX_RETRIES", "0")
    monkeypatch.setenv("SPLIT_COORDINATOR_OPERATOR_KEY_HASH", hash_operator_key(OPERATOR_KEY, rounds=4))

    import coordinator.config as config_mod
    import coordinator.events as events_mod
    import coordinator.auth as auth_mod
    import coordinator.middleware as middleware_mod
    import coordinator.routes.splits as splits_mod
    import coordinator.routes.tokens as tokens_mod
    import coordinator.routes.webhooks as webhooks_mod

    importlib.reload(config_mod)
    importlib.reload(events_mod)
    importlib.reload(auth_mod)
    importlib.reload(middleware_mod)
    importlib.reload(splits_mod)
    importlib.reload(tokens_mod)
    importlib.reload(webhooks_mod)

    return config_mod


@pytest.fixture()
def coordinator_app(coordinator_env):
    import coordinator.app as app_mod

    importlib.reload(app_mod)
    return app_mod.create_app()


@pytest.fixture()
def session_factory(coordinator_env):
    from coordinator.models import Base

    Base.metadata.create_all(bind=coordinator_env.engine)
    return coordinator_env.SessionLocal


@pytest.fixture()
def domain() -> Domain:
    return Domain(name="SplitSettlement", version="1", chain_id=CHAIN_ID, verifying_contract=COORDINATOR_ADDRESS)


@pytest.fixture()
def settlement_engine(domain: Domain) -> SettlementEngine:
    return SettlementEngine(domain)


@pytest.fixture()
def wallets() -> dict[str, keys.PrivateKey]:
    return {
        "payer": keys.PrivateKey(b"\x11" * 32),
        "alice": keys.PrivateKey(b"\x22" * 32),
        "bob": keys.PrivateKey(b"\x33" * 32),
        "carol": keys.PrivateKey(b"\x44" * 32),
    }


@pytest.fixture()
def addr(wallets):
    def _addr(name: str) -> str:
        return wallets[name].public_key.to_checksum_address()

    return _addr


@pytest.fixture()
def sign_approval(domain, wallets):
    """Build and sign one approval as the named wallet would off-core."""

    def _sign(
        name: str,
        *,
        split_id: int,
        token: str,
        payer: str,
        amount: int,
        deadline: int = 0,
        salt: bytes | None = None,
        signer: str | None = None,
        signing_domain: Domain | None = None,
    ) -> tuple[Approval, SignatureTriple]:
        approval = Approval.build(
            participant=wallets[name].public_key.to_checksum_address(),
            split_id=split_id,
            token=token,
            payer=payer,
            amount=amount,
            deadline=deadline,
            salt=salt if salt is not None else os.urandom(32),
        )
        digest = approval_digest(signing_domain or domain, approval)
        sig = wallets[signer or name].sign_msg_hash(digest)
        return approval, SignatureTriple(v=sig.v + 27, r=sig.r, s=sig.s)

    return _sign


@pytest.fixture()
def operator_header():
    return {"Authorization": f"Bearer {OPERATOR_KEY}"}


@pytest.fixture()
def token() -> str:
    return TOKEN


@pytest.fixture()
def coordinator_address() -> str:
    return COORDINATOR_ADDRESS


@pytest.fixture()
def fund(session_factory, coordinator_address):
    """Mint ``balance`` to a holder and grant the coordinator ``allowance``."""
    from coordinator.token_ledger import SqlTokenLedger

    def _fund(holder: str, balance: int, allowance: int | None = None, token: str = TOKEN) -> None:
        session = session_factory()
        try:
            with session.begin():
                ledger = SqlTokenLedger(session, token, coordinator_address)
                ledger.mint(holder, balance)
                ledger.approve(holder, coordinator_address, balance if allowance is None else allowance)
        finally:
            session.close()

    return _fund


@pytest.fixture()
def balances(session_factory, coordinator_address):
    def _balance(holder: str, token: str = TOKEN) -> int:
        from coordinator.token_ledger import SqlTokenLedger

        session = session_factory()
        try:
            with session.begin():
                return SqlTokenLedger(session, token, coordinator_address).balance_of(holder)
        finally:
            session.close()

    return _balance
