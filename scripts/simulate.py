"""
Bill Race Simulation Script

Fires concurrent "generate bill" calls at a running API to check that
each order ends up with exactly one bill and that bill numbers never
collide.
Run from project root: python scripts/simulate.py --orders 1 2 3

Author: Foody Engineering
Version: 1.0.0
"""

import argparse
import asyncio
import time
from datetime import datetime
from typing import Any

import httpx

# Configuration
API_BASE_URL = "http://localhost:8001"
CALLS_PER_ORDER = 20
STAFF_HEADERS = {"X-User-Id": "1", "X-User-Role": "staff"}
PAYMENT_METHODS = ["cash", "esewa", "khalti", "bank"]


async def send_generate(
    client: httpx.AsyncClient,
    order_id: int,
    call_num: int,
) -> dict[str, Any]:
    """POST /api/bills/{order_id} once and record the outcome."""
    start_time = time.time()
    method = PAYMENT_METHODS[call_num % len(PAYMENT_METHODS)]

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/bills/{order_id}",
            json={"paymentMethod": method},
            headers=STAFF_HEADERS,
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return {
            "order_id": order_id,
            "call_num": call_num,
            "status": None,
            "error": str(e),
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)
    data = response.json()
    result = {
        "order_id": order_id,
        "call_num": call_num,
        "status": response.status_code,
        "time": elapsed,
    }
    if response.status_code == 201:
        result["bill_number"] = data["bill"]["billNumber"]
    else:
        result["error"] = data.get("detail")
    return result


async def run_simulation(order_ids: list[int], calls: int = CALLS_PER_ORDER) -> dict[str, Any]:
    """
    Race ``calls`` generate requests against every order at once.

    Args:
        order_ids: Orders without a bill yet
        calls: Concurrent requests per order
    """
    print("=" * 70)
    print("BILL RACE SIMULATION")
    print("=" * 70)
    print(f"Orders: {order_ids}")
    print(f"Calls per order: {calls}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        tasks = [
            send_generate(client, order_id, i + 1)
            for order_id in order_ids
            for i in range(calls)
        ]
        results = await asyncio.gather(*tasks)
    total_time = round(time.time() - start_time, 2)

    # Analyze results
    ok = True
    numbers = []
    for order_id in order_ids:
        mine = [r for r in results if r["order_id"] == order_id]
        created = [r for r in mine if r["status"] == 201]
        conflicts = [r for r in mine if r["status"] == 409]
        other = [r for r in mine if r["status"] not in (201, 409)]
        numbers += [r["bill_number"] for r in created]

        verdict = "OK" if len(created) == 1 and not other else "FAIL"
        ok = ok and verdict == "OK"
        print(
            f"\nOrder #{order_id}: {len(created)} created, "
            f"{len(conflicts)} conflicts, {len(other)} other  [{verdict}]"
        )
        for r in created:
            print(f"   winner: call {r['call_num']} -> {r['bill_number']}")
        for r in other[:5]:
            print(f"   call {r['call_num']}: {r['status']} {r.get('error')}")

    duplicates = sorted({n for n in numbers if numbers.count(n) > 1})

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"Requests: {len(results)} in {total_time}s")
    print(f"Bill numbers issued: {sorted(numbers)}")
    if duplicates:
        ok = False
        print(f"Duplicate bill numbers: {duplicates}")
    else:
        print("No duplicate bill numbers")
    print(f"Result: {'PASS' if ok else 'FAIL'}")
    print("=" * 70)

    return {
        "total": len(results),
        "bill_numbers": numbers,
        "duplicates": duplicates,
        "passed": ok,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Bill Race Simulation Script")
    parser.add_argument("--orders", type=int, nargs="+", required=True, help="Order ids to bill")
    parser.add_argument("--calls", type=int, default=CALLS_PER_ORDER, help="Concurrent calls per order")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(args.orders, args.calls))
    raise SystemExit(0 if summary["passed"] else 1)
