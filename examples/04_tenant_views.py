#!/usr/bin/env python3
"""
Example 4: Tenant Views

Serves one shared settings object to two tenants, each with its own visible
keys, virtual properties and value transforms.
"""

import sys

from proxyable import PropertyNotVisibleError, create_tenant_views, keys


def main():
    """Tenant views example."""
    print("=== Tenant Views Example ===\n")

    settings = {"theme": "dark", "quota_mb": 512, "billing_account": "ACME-001"}

    views = create_tenant_views(settings, {
        "free": {
            "visible_keys": {"theme", "quota_mb"},
            "virtual_properties": {"plan": "free"},
            "transform_get": lambda key, value, handle: min(value, 100) if key == "quota_mb" else value,
        },
        "enterprise": {
            "virtual_properties": {
                "plan": "enterprise",
                "quota_gb": lambda handle: handle["quota_mb"] / 1024,
            },
            "metadata": {"support": "24/7"},
        },
    })

    for tenant_id, view in views.items():
        print(f"--- {tenant_id} ---")
        print(f"[+] Keys: {keys(view.proxy)}")
        print(f"[+] quota_mb = {view.proxy['quota_mb']}")
        try:
            print(f"[+] billing_account = {view.proxy['billing_account']}")
        except PropertyNotVisibleError as e:
            print(f"[-] {e.message}")
        if view.get_metadata():
            print(f"[i] Metadata: {view.get_metadata()}")
        print()

    return 0


if __name__ == "__main__":
    sys.exit(main())
