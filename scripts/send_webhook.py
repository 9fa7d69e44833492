"""POST a synthetic gateway notification to the checkout webhook.

Useful for exercising late confirmations and duplicate deliveries by hand.
"""

import argparse
import json
from pathlib import Path
from uuid import uuid4

import httpx


def build_payload(event_name: str, payment_id: str, transaction_id: str | None, amount: float | None) -> dict:
    """Minimal notification body in the gateway's current shape."""

    data = {"id": payment_id, "transaction_id": transaction_id or f"tx-{uuid4().hex[:12]}"}
    if amount is not None:
        data["amount"] = amount
    return {"event_name": event_name, "data": data}


def main() -> None:
    """Parse CLI args and deliver one notification."""

    parser = argparse.ArgumentParser(description="Send a synthetic PIX webhook to the checkout service.")
    parser.add_argument("--checkout-url", default="http://localhost:8001")
    parser.add_argument("--event", default="payment.completed")
    parser.add_argument("--payment-id", default=None)
    parser.add_argument("--transaction-id", default=None, help="Reuse to simulate a redelivery")
    parser.add_argument("--amount", type=float, default=None)
    parser.add_argument("--order-id", default=None, help="Sent as the order_id query parameter")
    parser.add_argument("--file", dest="json_file", default=None, help="Path to a raw JSON body")
    args = parser.parse_args()

    if args.json_file:
        payload = json.loads(Path(args.json_file).read_text())
    elif args.payment_id:
        payload = build_payload(args.event, args.payment_id, args.transaction_id, args.amount)
    else:
        raise SystemExit("Provide --payment-id or --file")

    params = {"order_id": args.order_id} if args.order_id else None
    resp = httpx.post(f"{args.checkout_url}/api/checkout/webhook", json=payload, params=params, timeout=10.0)
    resp.raise_for_status()
    print(f"Delivered event={payload.get('event_name')} status={resp.status_code}")


if __name__ == "__main__":
    main()
