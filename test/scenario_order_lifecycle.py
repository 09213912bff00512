#!/usr/bin/env python3
"""
Live scenario against a running stack.

1. c1 creates a plumbing order; a second create is refused (409).
2. An electrician cannot claim it (403).
3. Eight plumbers race to claim it: exactly one 200, the rest 409.
4. Winner goes in progress, shares location, completes; a later location report is refused.

Run: python test/scenario_order_lifecycle.py
Requires: API running (uvicorn komek.main:app), Postgres migrated, Redis.
"""
import asyncio
import os
import sys
import threading
import uuid

# test/ directory on path so _helper is found (avoid "test" package - shadows stdlib)
_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from _helper import call, fetch_order_row, issue_token, seed_user

RACERS = 8


def main() -> None:
    run_id = uuid.uuid4().hex[:8]
    customer = f"c-{run_id}"
    electrician = f"e-{run_id}"
    plumbers = [f"p{i}-{run_id}" for i in range(RACERS)]

    async def seed() -> None:
        await seed_user(customer)
        await seed_user(electrician, ["elektrik"])
        for p in plumbers:
            await seed_user(p, ["santehnik"])

    asyncio.run(seed())
    tokens = {u: issue_token(u) for u in [customer, electrician, *plumbers]}
    ok = True

    status, body = call("POST", "/orders", tokens[customer], {"specialtyId": "santehnik", "description": "Leaking tap"})
    if status != 201:
        print(f"  FAIL create: status={status} body={body}")
        sys.exit(1)
    order_id = body["order"]["id"]
    print(f"Order ID: {order_id}")

    status, _ = call("POST", "/orders", tokens[customer], {"specialtyId": "cleaning"})
    print(f"  second open order: {status}")
    ok &= status == 409

    status, _ = call("PATCH", f"/orders/{order_id}/accept", tokens[electrician])
    print(f"  electrician claim: {status}")
    ok &= status == 403

    results: list[tuple[str, int]] = []
    barrier = threading.Barrier(RACERS)

    def claim(user: str) -> None:
        barrier.wait()
        code, _ = call("PATCH", f"/orders/{order_id}/accept", tokens[user])
        results.append((user, code))

    threads = [threading.Thread(target=claim, args=(p,)) for p in plumbers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [u for u, code in results if code == 200]
    losers = [code for _, code in results if code != 200]
    print(f"  claim race: winners={winners} other codes={sorted(set(losers))}")
    if len(winners) != 1 or any(code != 409 for code in losers):
        print("  FAIL: expected exactly one winner and 409 for everyone else")
        sys.exit(1)
    winner = winners[0]

    row = asyncio.run(fetch_order_row(order_id))
    ok &= row["status"] == "accepted" and row["specialist_id"] == winner

    steps = [
        ("PATCH", f"/orders/{order_id}/status", {"status": "in_progress"}, 200),
        ("PATCH", f"/orders/{order_id}/specialist-location", {"latitude": 55.75, "longitude": 37.61}, 200),
        ("PATCH", f"/orders/{order_id}/status", {"status": "completed"}, 200),
        ("PATCH", f"/orders/{order_id}/specialist-location", {"latitude": 55.76, "longitude": 37.62}, 409),
    ]
    for method, path, payload, expected in steps:
        code, body = call(method, path, tokens[winner], payload)
        print(f"  {path.rsplit('/', 1)[-1]} {payload}: {code}")
        if code != expected:
            print(f"  FAIL: expected {expected}, body={body}")
            ok = False

    row = asyncio.run(fetch_order_row(order_id))
    ok &= row["status"] == "completed" and row["specialist_latitude"] == 55.75

    if ok:
        print("Order lifecycle scenario: PASSED")
    else:
        print("Order lifecycle scenario: FAILED")
        sys.exit(1)


if __name__ == "__main__":
    main()
