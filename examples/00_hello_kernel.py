#!/usr/bin/env python3
"""
Example 0: Hello Kernel

Wraps a plain dict in a Kernel and registers two read handlers: one that
defers and one that answers reads of "name" with a different value.
"""

import sys

from proxyable import UNDECIDED, Kernel, Value, keys


def main():
    """Hello kernel example."""
    print("=== Hello Kernel ===\n")

    person = {"name": "Alice", "age": 30}
    kernel = Kernel(person)
    handle = kernel.handle

    print(f"[+] Unmediated read: name={handle['name']}")

    kernel.on_read(lambda op: UNDECIDED)
    kernel.on_read(lambda op: Value("Bob") if op.key == "name" else UNDECIDED)

    print(f"[+] Mediated read:   name={handle['name']}, age={handle.age}")
    print(f"[+] Keys: {keys(handle)}")
    print(f"[+] Raw target unchanged: {person}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
