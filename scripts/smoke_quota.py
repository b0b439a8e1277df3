from __future__ import annotations

import argparse
import asyncio
import sys

from auditflow.core.config import get_settings
from auditflow.core.errors import StoreError
from auditflow.core.logging import configure_logging
from auditflow.persistence.store import build_record_store
from auditflow.services.quota import QuotaLedger


def _build_parser() -> argparse.ArgumentParser:
    # Exercise the increment procedure end to end against a real store.
    parser = argparse.ArgumentParser(description="Seed a subscriber and increment its quota")
    parser.add_argument("--email", default="test@example.com", help="Subscriber billing email")
    parser.add_argument("--quota", type=int, default=100, help="Monthly allowance to seed")
    parser.add_argument("--tier", default="basic", help="free|basic|premium|enterprise")
    parser.add_argument("--increment", type=int, default=1, help="Units to consume")
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = build_record_store(settings)
    if store is None:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 1
    try:
        seed = {
            "monthly_quota": args.quota,
            "quota_used": 0,
            "subscription_tier": args.tier,
            "subscribed": True,
        }
        existing = await store.select_one("subscribers", filters={"email": args.email})
        if existing is None:
            await store.insert("subscribers", {"email": args.email, **seed})
        else:
            await store.update("subscribers", filters={"email": args.email}, values=seed)

        ledger = QuotaLedger(store, increment_procedure=settings.quota_increment_procedure)
        await ledger.increment(args.email, args.increment)
        status = await ledger.get_status(args.email)
    except StoreError as exc:
        print(f"smoke_quota failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await store.close()

    print(f"OK email={args.email} used={status.used} total={status.total} remaining={status.remaining}")
    return 0 if status.used == args.increment else 1


def main() -> None:
    configure_logging()
    args = _build_parser().parse_args()
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
