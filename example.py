#!/usr/bin/env python3
"""
Example usage of the kvite key-value store.
"""

import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

import kvite
from kvite.exceptions import IllegalStateError


class OutOfStock(Exception):
    pass


def main():
    """Demonstrate the kvite functionality."""
    print("=== kvite Demo ===\n")

    db = kvite.open(":memory:")
    print("1. Database opened")

    # Caller-managed transaction
    print("\n2. Caller-managed transaction:")
    tx = db.begin()
    inventory = tx.bucket("inventory")
    inventory.put("apples", b"3")
    inventory.put("pears", b"0")
    print("   - Put apples=3, pears=0")
    print(f"   - Get apples: {inventory.get('apples')!r}")
    tx.commit()
    print("   - Transaction committed")

    # Managed transaction that commits
    print("\n3. Managed transaction:")

    def sell(name):
        def fn(tx):
            b = tx.bucket("inventory")
            count = int(b.get(name) or b"0")
            if count == 0:
                raise OutOfStock(name)
            b.put(name, str(count - 1).encode())
            return count - 1
        return fn

    print(f"   - Sold an apple, {db.transaction(sell('apples'))} left")

    # Managed transaction that rolls back
    try:
        db.transaction(sell("pears"))
    except OutOfStock as e:
        print(f"   - Could not sell {e}, transaction rolled back")

    # The runner owns the boundary of a managed transaction
    def sneaky(tx):
        try:
            tx.commit()
        except IllegalStateError as e:
            print(f"   - {e}")

    db.transaction(sneaky)

    # Iteration
    print("\n4. Contents:")
    tx = db.begin()
    tx.bucket("inventory").for_each(lambda k, v: print(f"   - {k}: {v.decode()}"))
    tx.rollback()

    print(f"\n5. Buckets: {db.buckets()}")
    db.close()

    print("\n=== Demo completed successfully! ===")


if __name__ == "__main__":
    main()
