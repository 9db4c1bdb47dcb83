#!/usr/bin/env python3
"""
Example 5: Record and Replay

Records a short session against a shopping cart and replays it against the
snapshot taken when recording started.
"""

import sys

from proxyable import Kernel, ReplayRecorder


def main():
    """Record and replay example."""
    print("=== Record and Replay Example ===\n")

    cart = {"items": 0, "total": 0}
    kernel = Kernel(cart)
    recorder = ReplayRecorder(kernel.target)
    recorder.register(kernel)

    def shopping_session():
        handle = kernel.handle
        for price in (10, 25, 5):
            handle["items"] = handle["items"] + 1
            handle["total"] = handle["total"] + price

    rec_id = recorder.record(shopping_session)
    recording = recorder.get_recording(rec_id)
    print(f"[+] Recorded {rec_id}: {len(recording.invocations)} operations")
    print(f"[+] Live cart: {cart}")

    cart["total"] = 999
    print(f"[i] Live cart changed afterwards: {cart}")

    result = recorder.replay(rec_id)
    failures = [r for r in result.replayed_invocations if r.failed]
    print(f"[+] Replayed in {result.duration * 1000:.2f} ms with {len(failures)} failures")
    print(f"[+] Replayed final state: {result.final_state}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
