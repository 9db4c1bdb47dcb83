#!/usr/bin/env python3
"""
Example 7: Simulation, Sandbox and Virtual Fields

Tries a withdrawal speculatively before committing it, runs a plugin inside a
sandbox that hides the account's API key, and adds a computed field.
"""

import sys

from proxyable import (
    SandboxViolationError,
    create_sandbox_context,
    create_simulation_context,
    create_virtual_context,
    keys,
)


def main():
    """Simulation, sandbox and virtual field example."""
    print("=== Simulation / Sandbox / Virtual Fields Example ===\n")

    account = {"owner": "Alice", "balance": 100, "api_key": "sk-123"}

    # Speculative withdrawal
    sim = create_simulation_context(account)

    def withdraw():
        sim.handle["balance"] = sim.handle["balance"] - 30

    sim.speculate(withdraw)
    changes = sim.get_change_set()
    print(f"[i] Speculative changes: {changes.modified}")
    print(f"[i] Real balance still {account['balance']}")
    sim.commit()
    print(f"[+] Committed, balance now {account['balance']}")

    # Sandboxed plugin
    sandbox = create_sandbox_context(account, restricted_keys={"api_key"})
    sandbox.register(sim.kernel)
    print(f"[+] Plugin sees keys: {sandbox.call(lambda: keys(sim.handle))}")
    try:
        sandbox.call(lambda: sim.handle["api_key"])
    except SandboxViolationError as e:
        print(f"[-] Plugin blocked: {e.reason}")

    # Computed field
    virtual = create_virtual_context(account, fields={"summary": lambda t: f"{t['owner']}: {t['balance']}"})
    print(f"[+] Virtual summary: {virtual.call(lambda: virtual.handle['summary'])}")
    print(f"[i] Stored keys unchanged: {sorted(account)}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
