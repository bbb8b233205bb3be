"""
Simulate a signed provider webhook against a running Hookgate instance.

Usage:
    python scripts/simulate_webhook.py --secret <key>
    python scripts/simulate_webhook.py --endpoint account-status --event ACCT_APPROVED --secret <key>
    python scripts/simulate_webhook.py --endpoint netbanx --unsigned
    python scripts/simulate_webhook.py --secret <key> --repeat 3   # same id, exercises dedup
"""
import argparse
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone

import httpx

from hookgate.services.signature_verifier import compute_signature

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"

DEFAULT_EVENTS = {
    "netbanx": "PAYMENT_COMPLETED",
    "account-status": "ACCT_APPROVED",
    "direct-debit": "DD_PAYMENT_COMPLETED",
    "alternate-payments": "AP_PAYMENT_COMPLETED",
}


def build_payload(endpoint: str, event_type: str, event_id: str) -> dict:
    """Representative body for each provider endpoint."""
    now = datetime.now(timezone.utc).isoformat()
    if endpoint == "netbanx":
        return {
            "id": event_id,
            "eventType": event_type,
            "eventData": {
                "id": f"txn_{uuid.uuid4().hex[:12]}",
                "merchantRefNum": f"order-{uuid.uuid4().hex[:8]}",
                "amount": 2599,
                "currencyCode": "USD",
                "status": "COMPLETED",
                "txnTime": now,
                "card": {"type": "VI", "lastDigits": "4242"},
            },
        }
    if endpoint == "account-status":
        return {
            "id": event_id,
            "eventType": event_type,
            "eventDate": now,
            "account": {"id": "acct_1001", "merchantId": "m_77", "status": "APPROVED"},
            "statusChange": {"fromStatus": "PENDING", "toStatus": "APPROVED"},
        }
    return {
        "id": event_id,
        "eventType": event_type,
        "eventDate": now,
        "mode": "TEST",
        "payload": {
            "transactionId": f"txn_{uuid.uuid4().hex[:12]}",
            "amount": 1500,
            "currency": "EUR",
            "status": "COMPLETED",
        },
    }


async def send_webhook(
    base_url: str,
    endpoint: str,
    payload: dict,
    secret: str,
    algorithm: str,
    header: str,
    unsigned: bool,
):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if not unsigned:
        headers[header] = f"{algorithm}={compute_signature(secret, body, algorithm)}"

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{base_url}/webhooks/{endpoint}", content=body, headers=headers)
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate a signed provider webhook")
    parser.add_argument("--endpoint", default="netbanx", choices=sorted(DEFAULT_EVENTS))
    parser.add_argument("--event", default=None, help="eventType (defaults per endpoint)")
    parser.add_argument("--id", default=None, help="Event id (random by default)")
    parser.add_argument("--secret", default="", help="Webhook signing secret for the endpoint")
    parser.add_argument("--algorithm", default="sha256", choices=["sha256", "sha512"])
    parser.add_argument("--header", default="x-paysafe-signature")
    parser.add_argument("--unsigned", action="store_true", help="Send without a signature header")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same event N times")
    parser.add_argument("--url", default=BASE_URL)
    args = parser.parse_args()

    if not args.secret and not args.unsigned:
        parser.error("--secret is required unless --unsigned is given")

    event_id = args.id or f"evt_{uuid.uuid4().hex[:16]}"
    payload = build_payload(args.endpoint, args.event or DEFAULT_EVENTS[args.endpoint], event_id)
    for _ in range(max(args.repeat, 1)):
        await send_webhook(
            args.url.rstrip("/"), args.endpoint, payload, args.secret, args.algorithm, args.header, args.unsigned,
        )


if __name__ == "__main__":
    asyncio.run(main())
