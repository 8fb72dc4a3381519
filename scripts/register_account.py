#!/usr/bin/env python3
"""Register (or replace) an account and its credentials from a JSON file.

Usage:
    PYTHONPATH=. python scripts/register_account.py account.json

account.json:
    {
      "id": "acct-1",
      "tier": "PREMIUM_MONTHLY",
      "credentials": [
        {"id": "c1", "platform": "facebook", "access_token": "...",
         "auxiliary": {"page_id": "123", "ad_account_id": "456"}}
      ]
    }
"""
import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pulse_core.accounts.store import AccountStore
from src.pulse_core.config import EngineSettings
from src.pulse_core.schemas.analytics import Account


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Register a Pulse account")
    parser.add_argument("path", type=Path, help="Account JSON file")
    args = parser.parse_args()

    try:
        account = Account.model_validate_json(args.path.read_text(encoding="utf-8"))
    except ValidationError as exc:
        logging.error("Invalid account file %s:\n%s", args.path, exc)
        return 1

    store = AccountStore(EngineSettings.from_env().db_path)
    store.save(account)

    print(
        f"Registered {account.id} ({account.tier.value}) with platforms: "
        + ", ".join(credential.platform.value for credential in account.credentials)
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
