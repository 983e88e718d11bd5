"""List or replay stored webhook dead letters.

A dead letter is a verified webhook that matched no application. Once the
application exists (or its link id is restored) the stored body can be
re-applied; replays skip the duplicate check since the event id was already
recorded when the letter was stored.
"""

import argparse

from admitpay.common.config import settings
from admitpay.common.db import SessionLocal
from admitpay.services.payments.webhook import WebhookService


def main() -> None:
    """CLI entrypoint for dead-letter inspection and replay."""

    parser = argparse.ArgumentParser(description="List or replay webhook dead letters.")
    parser.add_argument("--id", dest="dead_letter_id", default=None, help="Dead letter id to replay")
    parser.add_argument("--all", action="store_true", help="Replay every pending dead letter")
    parser.add_argument("--include-replayed", action="store_true")
    args = parser.parse_args()

    service = WebhookService(SessionLocal, settings.razorpay_webhook_secret)
    letters = service.list_dead_letters(include_replayed=args.include_replayed)

    if not args.dead_letter_id and not args.all:
        for letter in letters:
            replayed = letter.replayed_at.isoformat() if letter.replayed_at else "-"
            print(f"{letter.id}  {letter.event:<28} {letter.reason:<24} replayed={replayed}")
        print(f"{len(letters)} dead letter(s)")
        return

    targets = [args.dead_letter_id] if args.dead_letter_id else [letter.id for letter in letters]
    failures = 0
    for dead_letter_id in targets:
        result = service.replay_dead_letter(dead_letter_id)
        print(f"{dead_letter_id} -> {result.status_code} {result.body}")
        if result.status_code >= 400:
            failures += 1
    raise SystemExit(1 if failures else 0)


if __name__ == "__main__":
    main()
