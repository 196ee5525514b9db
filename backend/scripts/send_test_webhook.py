#!/usr/bin/env python3
"""
Sign and send a payment webhook to a running backend.

Usage:
    # Monthly payment for a known user
    WEBHOOK_SECRET=... python send_test_webhook.py --payment-id pay_123 --email user@example.com

    # Same delivery twice (second call should report a duplicate)
    python send_test_webhook.py --payment-id pay_123 --repeat 2

    # Payment without email (creates a placeholder user)
    python send_test_webhook.py --payment-id pay_456 --plan yearly --amount 9999
"""

import argparse
import json
import os
import sys

import httpx

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.security import WebhookSignatureVerifier


def build_payload(args) -> dict:
    payload = {
        "externalPaymentId": args.payment_id,
        "eventType": args.event_type,
        "amount": args.amount,
        "currency": args.currency,
        "planType": args.plan,
    }
    if args.email:
        payload["email"] = args.email
    if args.provider:
        payload["provider"] = args.provider
    return payload


def send(base_url: str, body: bytes, signature: str) -> httpx.Response:
    return httpx.post(
        f"{base_url.rstrip('/')}/webhooks/payment",
        content=body,
        headers={
            "Content-Type": "application/json",
            settings.WEBHOOK_SIGNATURE_HEADER: signature,
        },
        timeout=5.0,
    )


def main():
    parser = argparse.ArgumentParser(description="Send a signed payment webhook")
    parser.add_argument("--url", default=os.getenv("BACKEND_URL", "http://localhost:8000"))
    parser.add_argument("--payment-id", required=True)
    parser.add_argument("--event-type", default="payment.success")
    parser.add_argument("--email")
    parser.add_argument("--amount", type=int, default=999)
    parser.add_argument("--currency", default="USD")
    parser.add_argument("--plan", default="monthly")
    parser.add_argument("--provider")
    parser.add_argument("--repeat", type=int, default=1, help="Send the identical delivery N times")
    parser.add_argument("--bad-signature", action="store_true", help="Corrupt the signature")
    args = parser.parse_args()

    secret = os.getenv("WEBHOOK_SECRET") or settings.WEBHOOK_SECRET
    if not secret:
        print("❌ WEBHOOK_SECRET is not set")
        return 1

    body = json.dumps(build_payload(args), separators=(",", ":")).encode("utf-8")
    signature = WebhookSignatureVerifier(secret).compute_signature(body)
    if args.bad_signature:
        signature = "0" * len(signature)

    for attempt in range(1, args.repeat + 1):
        try:
            response = send(args.url, body, signature)
        except httpx.HTTPError as e:
            print(f"❌ Request failed: {e}")
            return 1
        print(f"[{attempt}] {response.status_code} {response.text}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
