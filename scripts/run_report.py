#!/usr/bin/env python3
"""CLI entry point for building an insights report.

Usage:
    # Aggregate every connected platform for an account
    PYTHONPATH=. python scripts/run_report.py acct-1

    # Single platform
    PYTHONPATH=. python scripts/run_report.py acct-1 --platform instagram
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

import aiohttp

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pulse_core.accounts.store import AccountStore
from src.pulse_core.config import EngineSettings
from src.pulse_core.credentials.refresh import OAuthCredentialRefresher, oauth_clients_from_env
from src.pulse_core.insights.orchestrator import InsightsOrchestrator
from src.pulse_core.insights.registry import build_adapters, build_cache, build_fetch_client
from src.pulse_core.schemas.analytics import Platform


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Pulse insights report")
    parser.add_argument("account_id", help="Account identifier in the account store")
    parser.add_argument(
        "--platform",
        choices=[platform.value for platform in Platform],
        help="Fetch a single connected platform",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    settings = EngineSettings.from_env()
    store = AccountStore(settings.db_path)

    account = store.load(args.account_id)
    if account is None:
        logging.error("Account not found: %s", args.account_id)
        return 1

    oauth_clients = oauth_clients_from_env()
    timeout = aiohttp.ClientTimeout(total=300, connect=30)

    async with aiohttp.ClientSession(timeout=timeout) as session:
        client = build_fetch_client(session, settings)
        orchestrator = InsightsOrchestrator(
            adapters=build_adapters(
                client, settings, amazon_app=oauth_clients.get(Platform.AMAZON)
            ),
            cache=build_cache(settings),
            refresher=OAuthCredentialRefresher(
                client, oauth_clients, on_refreshed=store.update_credential
            ),
            settings=settings,
        )

        if args.platform:
            report = await orchestrator.get_platform_report(account, Platform(args.platform))
        else:
            report = await orchestrator.get_report(account)

    print(report.model_dump_json(indent=2))
    return 1 if report.has_errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
