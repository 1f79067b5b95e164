"""
Ledger Verification Script

Verifies the payment ledger after a simulation: every order appears at
most once and revenue adds up.
Run from project root: python scripts/verify.py
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from food_ordering.services.ledger import PaymentLedger


def verify_ledger() -> bool:
    """Verify ledger integrity after simulation."""
    ledger = PaymentLedger.from_settings()

    print("=" * 60)
    print("🔍 PAYMENT LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ledger.path}")
    print("=" * 60)

    if not ledger.path.exists():
        print("\n❌ Ledger file not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    df = pd.DataFrame(ledger.read_all(), columns=PaymentLedger.COLUMNS)
    print("\n✅ Ledger loaded successfully!")

    print("\n📊 STATISTICS:")
    print(f"   Payments: {len(df)}")
    for provider, count in df["provider"].value_counts().items():
        print(f"   {provider}: {count}")

    ok = True

    duplicates = int(df["order_id"].duplicated().sum())
    if duplicates > 0:
        print(f"\n⚠️ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print("✅ No duplicate order IDs")

    missing_tx = int(df["transaction_id"].isna().sum())
    if missing_tx > 0:
        print(f"⚠️ {missing_tx} payments without a transaction id")
        ok = False
    else:
        print("✅ Every payment carries a transaction id")

    print("\n💰 REVENUE:")
    print(f"   Total: {ledger.total_revenue() or 0:.2f}")
    if len(df) > 0:
        print(f"   Average: {df['amount'].mean():.2f}")

    print("\n📋 RECENT PAYMENTS:")
    print("-" * 60)
    if len(df) > 0:
        print(df[["order_id", "provider", "amount", "paid_at"]].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
