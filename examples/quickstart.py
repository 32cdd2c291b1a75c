from __future__ import annotations

import os

from split_settlement import SplitCoordinatorClient, address_of


TOKEN = "0x00000000000000000000000000000000000070ce"


def main() -> int:
    # Assumes the coordinator is already running locally with an operator key:
    #   SPLIT_COORDINATOR_OPERATOR_KEY_HASH=... python -m coordinator
    coordinator_url = os.getenv("SPLIT_COORDINATOR_URL", "http://127.0.0.1:3100")
    operator = SplitCoordinatorClient(coordinator_url, operator_key=os.environ["SPLIT_COORDINATOR_OPERATOR_KEY"])

    payer_key = "0x" + "11" * 32
    alice_key = "0x" + "22" * 32
    bob_key = "0x" + "33" * 32
    payer, alice, bob = address_of(payer_key), address_of(alice_key), address_of(bob_key)

    # Dev ledger: fund both participants and let them grant the coordinator an allowance.
    for holder, amount in ((alice, 100), (bob, 50)):
        operator.mint(token=TOKEN, holder=holder, amount=amount)
        operator.approve(token=TOKEN, owner=holder, amount=amount)

    public = SplitCoordinatorClient(coordinator_url)
    split = public.create_split(payer=payer, token=TOKEN, legs=[(alice, 100), (bob, 50)])
    print("Split created:", split)

    # Each participant signs off-line; only the signatures travel.
    approvals = [
        public.sign_approval(split_id=split["split_id"], private_key=alice_key),
        public.sign_approval(split_id=split["split_id"], private_key=bob_key),
    ]

    settled = public.settle_split(split_id=split["split_id"], approvals=approvals, idempotency_key="quickstart-1")
    print("Settled:", settled)

    print("Payer balance:", public.balance_of(token=TOKEN, holder=payer))
    print("Events:", [e["event"] for e in public.get_events(split_id=split["split_id"])["events"]])
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
