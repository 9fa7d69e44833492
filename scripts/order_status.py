"""Fetch and print one order with its transition timeline."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for order reconciliation checks."""

    parser = argparse.ArgumentParser(description="Fetch an order and its timeline from the checkout service.")
    parser.add_argument("order_id")
    parser.add_argument("--checkout-url", default="http://localhost:8001")
    parser.add_argument("--refresh", action="store_true", help="Poll the gateway status first")
    args = parser.parse_args()

    resp = httpx.get(f"{args.checkout_url}/api/checkout/orders/{args.order_id}", timeout=10.0)
    resp.raise_for_status()
    order = resp.json()
    if args.refresh and order.get("paymentId"):
        status = httpx.get(f"{args.checkout_url}/api/checkout/status/{order['paymentId']}", timeout=10.0)
        status.raise_for_status()
        print(json.dumps(status.json(), indent=2))
        resp = httpx.get(f"{args.checkout_url}/api/checkout/orders/{args.order_id}", timeout=10.0)
        resp.raise_for_status()
        order = resp.json()
    print(json.dumps(order, indent=2))


if __name__ == "__main__":
    main()
