"""Mint an admin session token for local testing of the approvals app."""

import argparse
from datetime import timedelta

from admitpay.common.auth import issue_session


def main() -> None:
    """Print a signed bearer token for the given user and role."""

    parser = argparse.ArgumentParser(description="Issue a signed admin session token.")
    parser.add_argument("--user-id", default="admin-local")
    parser.add_argument("--email", default="admin@localhost")
    parser.add_argument("--role", default="admin", choices=["admin", "superadmin", "student"])
    parser.add_argument("--hours", type=int, default=8)
    parser.add_argument("--secret", default=None, help="Defaults to SESSION_SECRET")
    args = parser.parse_args()

    token = issue_session(
        args.user_id,
        args.email,
        args.role,
        ttl=timedelta(hours=args.hours),
        secret=args.secret,
    )
    print(token)


if __name__ == "__main__":
    main()
