"""
Operator Race Simulation Script

Places a batch of orders, then has several "operators" fire conflicting
status changes at every order at the same time, the way a busy admin
dashboard does. Afterwards every order is re-read to check that exactly one
terminal transition won and the status history is consistent.

Run from project root with the API running: python scripts/simulate.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20

# Sample data for random orders
FIRST_NAMES = ["Awa", "Moussa", "Fatou", "Ibrahima", "Aminata", "Cheikh", "Mariama", "Ousmane"]
LAST_NAMES = ["Diop", "Ndiaye", "Fall", "Sarr", "Ba", "Sow", "Gueye", "Faye"]
MENU_ITEMS = [
    {"id": "dibi-mouton", "name": "Dibi Mouton", "price": 3000},
    {"id": "dibi-poulet", "name": "Dibi Poulet", "price": 2500},
    {"id": "brochettes", "name": "Brochettes", "price": 2000},
    {"id": "pastels", "name": "Pastels", "price": 1000},
]
EXTRAS = ["Oignons", "Moutarde", {"id": "frites", "name": "Frites", "price": 500}]


def generate_order_payload() -> dict[str, Any]:
    """Generate payload for POST /api/orders."""
    items = []
    for menu_item in random.sample(MENU_ITEMS, k=random.randint(1, 3)):
        item = dict(menu_item)
        item["quantity"] = random.randint(1, 3)
        item["extras"] = random.sample(EXTRAS, k=random.randint(0, 2))
        items.append(item)

    total = sum(
        (i["price"] + sum(e["price"] for e in i["extras"] if isinstance(e, dict))) * i["quantity"]
        for i in items
    )
    return {
        "customer": {
            "name": f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
            "phone": f"+221 77 {random.randint(100, 999)} {random.randint(10, 99)} {random.randint(10, 99)}",
            "location": {
                "lat": round(14.6937 + random.uniform(-0.05, 0.05), 5),
                "lng": round(-17.4441 + random.uniform(-0.05, 0.05), 5),
            },
        },
        "items": items,
        "total": total,
        "preferredDeliveryTime": random.choice([None, "12:30", "19:00", "20:15"]),
    }


async def place_order(client: httpx.AsyncClient) -> str:
    for _ in range(3):
        response = await client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload())
        if response.status_code == 200:
            return response.json()["order_id"]
        # 409 CollisionError: a new number is drawn on the next attempt
        if response.status_code != 409:
            break
    raise RuntimeError(f"Could not place order: {response.text[:100]}")


async def set_status(client: httpx.AsyncClient, order_id: str, status: str) -> dict[str, Any]:
    start_time = time.time()
    response = await client.patch(
        f"{API_BASE_URL}/api/orders/{order_id}/status",
        params={"retry": "true"},
        json={"status": status},
        timeout=30.0,
    )
    return {
        "order_id": order_id,
        "status": status,
        "code": response.status_code,
        "error": None if response.status_code == 200 else response.json().get("error"),
        "time": round(time.time() - start_time, 3),
    }


async def race_order(client: httpx.AsyncClient, order_id: str) -> dict[str, Any]:
    """Process the order, then race completion against cancellation."""
    await set_status(client, order_id, "processing")
    results = await asyncio.gather(
        set_status(client, order_id, "completed"),
        set_status(client, order_id, "cancelled"),
    )
    order = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}")).json()
    winners = [r for r in results if r["code"] == 200]
    return {
        "order_id": order_id,
        "winners": len(winners),
        "final_status": order["status"],
        "history": sorted(order["statusHistory"]),
        "consistent": len(winners) == 1 and winners[0]["status"] == order["status"],
    }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 OPERATOR RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        order_ids = await asyncio.gather(*[place_order(client) for _ in range(num_orders)])
        print(f"\n✅ Placed {len(order_ids)} orders, racing operators...\n")
        results = await asyncio.gather(*[race_order(client, order_id) for order_id in order_ids])

    total_time = round(time.time() - start_time, 2)
    consistent = [r for r in results if r["consistent"]]
    broken = [r for r in results if not r["consistent"]]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ One winner per order: {len(consistent)}/{num_orders}")
    print(f"❌ Inconsistent orders: {len(broken)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    completed = sum(1 for r in results if r["final_status"] == "completed")
    print(f"\n   Completed: {completed}  Cancelled: {num_orders - completed}")

    if broken:
        print("\n⚠️  Inconsistent orders (showing first 5):")
        for r in broken[:5]:
            print(f"   #{r['order_id']}: winners={r['winners']} status={r['final_status']} history={r['history']}")

    print("=" * 70)
    return {"total": num_orders, "consistent": len(consistent), "broken": len(broken), "total_time": total_time}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Operator Race Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(args.orders))
    sys.exit(0 if summary["broken"] == 0 else 1)
