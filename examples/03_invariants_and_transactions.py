#!/usr/bin/env python3
"""
Example 3: Invariants and Transactions

Guards an account with invariants and runs a multi-step transfer inside a
transaction. A failing step rolls every change back.
"""

import argparse
import sys

from proxyable import (
    InvariantCapability,
    InvariantViolationError,
    Kernel,
    TransactionManager,
    immutable_invariant,
    range_invariant,
)


def main():
    """Invariants and transactions example."""
    parser = argparse.ArgumentParser(description="Invariants and transactions example")
    parser.add_argument("--amount", type=int, default=150,
                        help="Amount to transfer (the account holds 100)")
    args = parser.parse_args()

    print("=== Invariants and Transactions Example ===\n")

    account = {"id": "acc-1", "balance": 100, "history": 0}
    kernel = Kernel(account)

    # Enforcing capabilities first, journaling last
    invariants = InvariantCapability(kernel.target, {
        "non_negative": range_invariant("balance", 0, float("inf")),
        "fixed_id": immutable_invariant({"id"}),
    })
    tx = TransactionManager(kernel.target)
    invariants.register(kernel)
    tx.register(kernel)

    def transfer():
        handle = kernel.handle
        handle["history"] = handle["history"] + 1
        print(f"[+] Recorded transfer #{handle['history']}")
        handle["balance"] = handle["balance"] - args.amount
        print(f"[+] Debited {args.amount}")

    try:
        invariants.call(lambda: tx.call(transfer))
        tx.commit()
        print("[+] Transaction committed")
    except InvariantViolationError as e:
        print(f"[-] {e.message}")
        print(f"[i] Pending changes: {[entry.key for entry in tx.get_dry_run()]}")
        tx.rollback()
        print("[+] Transaction rolled back")

    print(f"\n[+] Account: {account}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
