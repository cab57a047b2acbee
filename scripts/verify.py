"""
Excel Ledger Verification Script

Verifies data integrity of the Excel order ledger.
Run from project root: python scripts/verify.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from orderdesk.services.excel_manager import ExcelManager
from orderdesk.services.status_machine import can_transition
from orderdesk.models import OrderStatus


def verify_excel() -> bool:
    """Verify the ledger after a simulation run."""
    manager = ExcelManager()

    print("=" * 60)
    print("🔍 EXCEL LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {manager.orders_file}")
    print("=" * 60)

    if not manager.orders_file.exists():
        print("\n❌ Excel file not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    df = pd.DataFrame(manager.get_all_orders())
    print(f"\n📊 STATISTICS:")
    print(f"   Total Orders: {len(df)}")

    missing = [col for col in ExcelManager.ORDER_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
        return False
    print(f"✅ All columns present")

    ok = True

    duplicates = df["order_id"].duplicated().sum()
    if duplicates > 0:
        print(f"⚠️ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print(f"✅ No duplicate order IDs")

    bad_ids = df[~df["order_id"].astype(str).str.fullmatch(r"[1-9][0-9]{6}")]
    if len(bad_ids):
        print(f"⚠️ {len(bad_ids)} malformed order IDs")
        ok = False

    # Reached statuses must form a legal path ending in the current status
    broken_paths = 0
    for _, row in df.iterrows():
        reached = [
            (row[f"{s.value}_at"], s) for s in OrderStatus
            if isinstance(row[f"{s.value}_at"], str)
        ]
        path = [s for _, s in sorted(reached)]
        legal = bool(path) and path[0] == OrderStatus.PENDING and path[-1].value == row["order_status"]
        legal = legal and all(can_transition(a, b) for a, b in zip(path, path[1:]))
        if not legal:
            broken_paths += 1
    if broken_paths:
        print(f"⚠️ {broken_paths} orders with an illegal status history")
        ok = False
    else:
        print(f"✅ Every status history is a legal path")

    print(f"\n💰 REVENUE (completed orders):")
    completed = df[df["order_status"] == OrderStatus.COMPLETED.value]
    print(f"   Total: {int(completed['total'].sum())} {df['currency'].iloc[0] if len(df) else ''}")

    print(f"\n📋 RECENT ORDERS:")
    print("-" * 60)
    cols = ["display_id", "customer_name", "total", "order_status"]
    print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_excel() else 1)
