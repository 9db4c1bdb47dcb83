#!/usr/bin/env python3
"""
Example 2: Access Control

Grants read access to some fields of a customer record through a
capability context, optionally loaded from a JSON or TOML policy file.
Outside the capability context every access is refused.
"""

import argparse
import sys

from proxyable import (
    AccessControlCapability,
    Kernel,
    OperationDeniedError,
    ProxyableError,
    keys,
)


def main():
    """Access control example."""
    parser = argparse.ArgumentParser(description="Access control example")
    parser.add_argument("--policy", help="Path to a JSON or TOML access policy")
    args = parser.parse_args()

    print("=== Access Control Example ===\n")

    customer = {"name": "Alice", "email": "alice@example.com", "ssn": "123-45-6789"}
    kernel = Kernel(customer)

    try:
        if args.policy:
            acl = AccessControlCapability.from_policy(kernel.target, args.policy)
            print(f"[+] Loaded policy from {args.policy}")
        else:
            acl = AccessControlCapability(kernel.target, can_read={"name", "email"}, can_write={"email"})
    except ProxyableError as e:
        print(f"[-] Could not load policy: {e}")
        return 1

    acl.register(kernel)
    handle = kernel.handle

    def support_agent():
        print(f"[+] Visible fields: {keys(handle)}")
        for field in ("name", "ssn"):
            try:
                print(f"[+] {field} = {handle[field]}")
            except OperationDeniedError as e:
                print(f"[-] {field}: {e.message}")
        if kernel.write("name", "Mallory"):
            print("[+] write name -> allowed")
        else:
            print(f"[-] write name -> denied ({kernel.get_last_denial().reason})")

    acl.call(support_agent)

    print("\n--- Outside the capability context ---")
    try:
        handle["name"]
    except OperationDeniedError as e:
        print(f"[-] {e.message}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
