#!/usr/bin/env python3
"""
Smoke script for a running PayBridge server.

Creates a payment, delivers the matching gateway webhook and prints the
events seen on the transaction stream.

Usage:
    python smoke_payments.py [stripe|paypal|razorpay]
"""
import json
import sys
import threading

import requests

BASE_URL = "http://localhost:8000/api"

WEBHOOKS = {
    "stripe": lambda ref, txn: {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": ref, "metadata": {"transaction_id": txn}}},
    },
    "paypal": lambda ref, txn: {
        "event_type": "PAYMENT.SALE.COMPLETED",
        "resource": {"parent_payment": ref, "custom": txn},
    },
    "razorpay": lambda ref, txn: {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": ref, "notes": {"transaction_id": txn}}}},
    },
}


def get_token(owner_id: str) -> str:
    response = requests.post(
        f"{BASE_URL}/auth/token",
        json={"ownerId": owner_id, "role": "merchant"},
        timeout=10,
    )
    response.raise_for_status()
    return response.json()["accessToken"]


def watch_events(token: str, stop: threading.Event):
    """Print transaction events until stop is set."""
    response = requests.get(
        f"{BASE_URL}/payments/transactions/events",
        headers={"Authorization": f"Bearer {token}"},
        stream=True,
        timeout=60,
    )
    for line in response.iter_lines():
        if stop.is_set():
            break
        if not line:
            continue
        line = line.decode("utf-8")
        if line.startswith("data:"):
            event = json.loads(line.split(":", 1)[1].strip())
            print(f"   📡 {event['type']}: status={event['data']['status']}")
    response.close()


def run(gateway: str):
    token = get_token("merchant_smoke")
    headers = {"Authorization": f"Bearer {token}"}

    stop = threading.Event()
    watcher = threading.Thread(target=watch_events, args=(token, stop), daemon=True)
    watcher.start()

    print(f"💳 Creating {gateway} payment...")
    response = requests.post(
        f"{BASE_URL}/payments",
        headers=headers,
        json={
            "amount": "50.00",
            "currency": "USD",
            "description": "Smoke test order",
            "customerEmail": "buyer@example.com",
            "gateway": gateway,
        },
        timeout=30,
    )
    body = response.json()
    print(f"   HTTP {response.status_code}: transaction={body.get('transactionId')}")
    if response.status_code != 201:
        print(json.dumps(body, indent=2))
        return

    transaction_id = body["transactionId"]
    detail = requests.get(f"{BASE_URL}/payments/transactions/{transaction_id}", headers=headers, timeout=10).json()
    reference = detail["transaction"]["externalReference"]
    print(f"   reference={reference}, status={detail['transaction']['status']}")

    print("🔔 Delivering webhook...")
    webhook = requests.post(
        f"{BASE_URL}/payments/webhooks/{gateway}",
        json=WEBHOOKS[gateway](reference, transaction_id),
        timeout=10,
    ).json()
    print(f"   outcome={webhook['outcome']}, status={webhook['status']}")

    print("🔁 Replaying webhook...")
    replay = requests.post(
        f"{BASE_URL}/payments/webhooks/{gateway}",
        json=WEBHOOKS[gateway](reference, transaction_id),
        timeout=10,
    ).json()
    print(f"   outcome={replay['outcome']}")

    stop.set()
    print("✅ Done")


if __name__ == "__main__":
    gateway = sys.argv[1] if len(sys.argv) > 1 else "stripe"
    if gateway not in WEBHOOKS:
        print(f"Usage: python smoke_payments.py [{'|'.join(WEBHOOKS)}]")
        sys.exit(1)
    run(gateway)
