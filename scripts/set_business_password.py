"""Utility to set or reset a business account password for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``dealspot`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dealspot import create_app
from dealspot.auth import hash_password
from dealspot.extensions import db
from dealspot.models import Business, BusinessUser


def set_password(email: str, password: str, business_id: str | None) -> None:
    app = create_app()

    with app.app_context():
        account = BusinessUser.query.filter_by(email=email.lower()).first()
        if account is None:
            if not business_id or db.session.get(Business, business_id) is None:
                raise SystemExit(f"No business account for {email}; pass --business-id of an existing business to create one.")
            account = BusinessUser(business_id=business_id, email=email.lower(), name="Owner", role="owner")
            db.session.add(account)

        account.password_hash = hash_password(password)
        account.is_active = True
        db.session.commit()

        app.logger.info("Password for %s has been set.", email)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a business user password for local testing.")
    parser.add_argument("email", help="Business user email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--business-id", help="Business to attach a new account to")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    set_password(args.email, args.password, args.business_id)


if __name__ == "__main__":
    main()
