"""Send a signed gateway webhook to a running payments app.

Useful for manual reconciliation checks and duplicate-delivery testing: pass
the same `--event-id` twice and the second delivery is acknowledged as a
duplicate.
"""

import argparse
import hashlib
import hmac
import json
from pathlib import Path
from uuid import uuid4

import httpx


def build_event(event: str, application_id: str, amount_paise: int, link_id: str | None) -> dict:
    """Minimal event body carrying the notes the webhook handler reads."""

    notes = {"application_id": application_id}
    body = {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": f"pay_{uuid4().hex[:14]}",
                    "amount": amount_paise,
                    "currency": "INR",
                    "status": "captured" if event != "payment.failed" else "failed",
                    "method": "upi",
                    "notes": notes,
                }
            }
        },
    }
    if link_id:
        body["payload"]["payment_link"] = {
            "entity": {"id": link_id, "status": "paid", "amount": amount_paise, "notes": notes}
        }
    return body


def main() -> None:
    """Parse CLI args, sign the body and POST it."""

    parser = argparse.ArgumentParser(description="POST a signed Razorpay-style webhook.")
    parser.add_argument("--url", default="http://localhost:8002/api/razorpay/webhook")
    parser.add_argument("--secret", required=True, help="RAZORPAY_WEBHOOK_SECRET of the target app")
    parser.add_argument("--event", default="payment_link.paid")
    parser.add_argument("--application-id", default=None)
    parser.add_argument("--amount-paise", type=int, default=100)
    parser.add_argument("--link-id", default=None)
    parser.add_argument("--file", dest="json_file", default=None, help="Send this JSON body verbatim")
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--tamper", action="store_true", help="Corrupt the signature")
    args = parser.parse_args()

    if args.json_file:
        body = Path(args.json_file).read_bytes()
    elif args.application_id:
        body = json.dumps(
            build_event(args.event, args.application_id, args.amount_paise, args.link_id)
        ).encode("utf-8")
    else:
        raise SystemExit("Provide --application-id or --file")

    signature = hmac.new(args.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if args.tamper:
        signature = ("0" if signature[0] != "0" else "1") + signature[1:]
    headers = {
        "content-type": "application/json",
        "x-razorpay-signature": signature,
        "x-razorpay-event-id": args.event_id or f"evt_{uuid4().hex}",
    }
    resp = httpx.post(args.url, content=body, headers=headers, timeout=10.0)
    print(f"{resp.status_code} {resp.text}")
    raise SystemExit(0 if resp.status_code < 400 else 1)


if __name__ == "__main__":
    main()
