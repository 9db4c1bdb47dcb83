#!/usr/bin/env python3
"""
Example 1: Audit Logging

Records every operation performed inside an audited block and exports the
log as JSON, CSV or text.
"""

import argparse
import logging
import sys

from proxyable import Kernel, ProxyableError, create_audit_context


def main():
    """Audit logging example."""
    parser = argparse.ArgumentParser(description="Audit logging example")
    parser.add_argument("--format", choices=["json", "csv", "text"], default="text",
                        help="Export format for the audit log")
    parser.add_argument("--writes-only", action="store_true",
                        help="Only keep write entries")
    parser.add_argument("--verbose", action="store_true",
                        help="Also stream entries to the proxyable.audit logger")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    print("=== Audit Logging Example ===\n")

    try:
        kernel = Kernel({"balance": 100, "owner": "Alice"})
        audit = create_audit_context(
            kernel.target,
            format="text",
            include_timestamp=False,
            filters=(lambda e: e.intent == "write") if args.writes_only else None,
        )
        audit.register(kernel)

        def session():
            handle = kernel.handle
            handle["balance"] = handle["balance"] - 25
            _ = "owner" in handle
            return handle["balance"]

        balance = audit.call(session)
        print(f"[+] Final balance: {balance}")
        print(f"[+] Recorded {len(audit.get_audit_log())} audit entries")

        print(f"\n--- Export ({args.format}) ---")
        print(audit.export_log(args.format))

    except ProxyableError as e:
        print(f"[-] Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
