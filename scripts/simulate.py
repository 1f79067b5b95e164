"""
Webhook Storm Simulation Script

Places orders against a running development server, opens a Stripe
checkout session for each, then fires duplicate signed webhooks mixed with
late failure callbacks at the same time. Every order must end up
``completed`` and be recorded once.

The server must run with ENV_MODE=development (mock payment providers).
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import json
import os
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx
import jwt

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from food_ordering.core.config import get_settings
from food_ordering.services.payment.mock import MockConfig, MockPaymentProvider

# Configuration
API_BASE_URL = "http://localhost:5000"
TOTAL_ORDERS = 20
DUPLICATES_PER_ORDER = 5

settings = get_settings()
signer = MockPaymentProvider("stripe", MockConfig(webhook_secret=settings.mock_webhook_secret))

STREETS = ["Road 11, Banani", "Lake Circus", "Gulshan Ave", "Satmasjid Rd", "Mirpur Rd"]
MENU_ITEMS = [
    {"menuItem": "m-biryani", "name": "Chicken Biryani", "price": 7.99},
    {"menuItem": "m-kacchi", "name": "Kacchi Biryani", "price": 9.49},
    {"menuItem": "m-naan", "name": "Garlic Naan", "price": 1.99},
    {"menuItem": "m-lassi", "name": "Mango Lassi", "price": 2.99},
    {"menuItem": "m-firni", "name": "Firni", "price": 3.49},
]


def make_token(user_id: str, is_admin: bool = False) -> str:
    payload = {"userId": user_id, "isAdmin": is_admin, "exp": int(time.time()) + 3600}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def generate_order_payload() -> dict[str, Any]:
    """Random items with a matching total."""
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 4)):
        items.append({**item, "quantity": random.randint(1, 3)})

    delivery_fee = random.choice([0, 0.99, 1.99])
    total = round(sum(i["price"] * i["quantity"] for i in items) + delivery_fee, 2)

    return {
        "items": items,
        "total": total,
        "deliveryFee": delivery_fee,
        "deliveryAddress": {
            "street": f"{random.randint(1, 99)} {random.choice(STREETS)}",
            "city": "Dhaka",
            "state": "Dhaka",
            "zipCode": random.choice(["1212", "1213", "1207", "1216"]),
        },
        "paymentMethod": "stripe",
    }


def completed_event(order_id: str, transaction_id: str) -> bytes:
    return json.dumps({
        "id": f"evt_sim_{random.randint(100000, 999999)}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": f"cs_sim_{order_id[:8]}",
                "payment_status": "paid",
                "client_reference_id": order_id,
                "metadata": {"orderId": order_id, "transactionId": transaction_id},
            }
        },
    }).encode("utf-8")


# =============================================================================
# ORDER + SESSION
# =============================================================================

async def prepare_order(client: httpx.AsyncClient, headers: dict) -> dict[str, Any]:
    """Create one order and open its checkout session."""
    payload = generate_order_payload()

    response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, headers=headers)
    response.raise_for_status()
    order = response.json()

    response = await client.post(
        f"{API_BASE_URL}/api/payment/stripe/create-session",
        json={"orderId": order["id"], "amount": order["total"]},
        headers=headers,
    )
    response.raise_for_status()
    session = response.json()

    return {"order_id": order["id"], "transaction_id": session["transactionId"], "total": order["total"]}


# =============================================================================
# STORM
# =============================================================================

async def send_webhook(client: httpx.AsyncClient, order: dict[str, Any]) -> dict[str, Any]:
    body = completed_event(order["order_id"], order["transaction_id"])
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/payment/stripe/webhook",
            content=body,
            headers={"Content-Type": "application/json", "Stripe-Signature": signer.sign_payload(body)},
            timeout=30.0,
        )
        return {
            "kind": "webhook",
            "success": response.status_code == 200,
            "status": response.status_code,
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {"kind": "webhook", "success": False, "error": str(e)[:100], "time": round(time.time() - start_time, 3)}


async def send_late_failure(client: httpx.AsyncClient, order: dict[str, Any]) -> dict[str, Any]:
    """A gateway 'fail' redirect racing the webhooks."""
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/payment/fail",
            data={"tran_id": order["transaction_id"], "value_a": order["order_id"]},
            timeout=30.0,
        )
        return {
            "kind": "fail",
            "success": response.status_code == 303,
            "status": response.status_code,
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {"kind": "fail", "success": False, "error": str(e)[:100], "time": round(time.time() - start_time, 3)}


async def run_simulation(num_orders: int = TOTAL_ORDERS, duplicates: int = DUPLICATES_PER_ORDER) -> dict[str, Any]:
    """
    Run the webhook storm.

    Args:
        num_orders: Orders to create
        duplicates: Signed webhook deliveries per order
    """
    print("=" * 70)
    print("🔥 WEBHOOK STORM - IDEMPOTENCY TEST")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}  |  Webhooks per order: {duplicates}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    customer = {"Authorization": f"Bearer {make_token('sim-customer')}"}
    admin = {"Authorization": f"Bearer {make_token('sim-admin', is_admin=True)}"}

    async with httpx.AsyncClient() as client:
        print("\n🧾 Creating orders and checkout sessions...")
        orders = await asyncio.gather(*(prepare_order(client, customer) for _ in range(num_orders)))

        print("🚀 Firing duplicate webhooks and late failures...\n")
        tasks = []
        for order in orders:
            tasks.extend(send_webhook(client, order) for _ in range(duplicates))
            tasks.append(send_late_failure(client, order))
        random.shuffle(tasks)

        start_time = time.time()
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        print("🔎 Checking final order state...")
        final = await asyncio.gather(*(
            client.get(f"{API_BASE_URL}/api/orders/{o['order_id']}", headers=admin) for o in orders
        ))

    statuses = [r.json().get("paymentStatus") for r in final]
    not_completed = [o["order_id"] for o, s in zip(orders, statuses) if s != "completed"]
    rejected = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n📨 Callbacks sent: {len(results)} in {total_time}s")
    print(f"❌ Callbacks not acknowledged: {len(rejected)}")
    print(f"✅ Orders completed: {num_orders - len(not_completed)}/{num_orders}")
    print(f"💰 Expected ledger revenue: {sum(o['total'] for o in orders):.2f}")

    if not_completed:
        print("\n⚠️  Orders not completed (showing first 5):")
        for order_id in not_completed[:5]:
            print(f"   {order_id}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - one ledger task per order")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "orders": num_orders,
        "callbacks": len(results),
        "not_completed": not_completed,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Webhook Storm Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--duplicates", type=int, default=DUPLICATES_PER_ORDER, help="Webhooks per order")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(num_orders=args.orders, duplicates=args.duplicates))
    sys.exit(1 if summary["not_completed"] else 0)
