#!/usr/bin/env python3
"""
Example 6: Call Contracts

Enforces argument validation, call ordering and a rate limit on a tiny
payment API.
"""

import sys

from proxyable import ContractCapability, ContractViolationError, Kernel


def authorize(card):
    return f"auth-{card[-4:]}"


def charge(auth_code, amount):
    return {"auth": auth_code, "amount": amount}


def main():
    """Call contracts example."""
    print("=== Call Contracts Example ===\n")

    contracts = ContractCapability(None, {
        "charge": {
            "validate": lambda args: args[1] > 0 or "amount must be positive",
            "sequence": ["authorize", "charge"],
            "rate_limit": (2, 60),
        },
    })

    handles = {}
    for fn in (authorize, charge):
        kernel = Kernel(fn)
        contracts.register(kernel)
        handles[fn.__name__] = kernel.handle

    def checkout():
        attempts = [
            ("charge before authorize", lambda: handles["charge"]("auth-0000", 10)),
            ("authorize", lambda: handles["authorize"]("4111111111111111")),
            ("negative charge", lambda: handles["charge"]("auth-1111", -5)),
            ("charge", lambda: handles["charge"]("auth-1111", 10)),
            ("second charge", lambda: handles["charge"]("auth-1111", 20)),
            ("third charge", lambda: handles["charge"]("auth-1111", 30)),
        ]
        for label, attempt in attempts:
            try:
                print(f"[+] {label}: {attempt()}")
            except ContractViolationError as e:
                print(f"[-] {label}: {e.reason}")

    contracts.call(checkout)

    stats = contracts.get_rate_limit_stats("charge")
    print(f"\n[i] charge calls in window: {stats.current_calls}/{stats.max_calls}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
