"""CLI tool to run one renewal reminder sweep outside the API server."""
import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


async def run_sweep(store_file: Path | None, today: date | None, dry_run: bool, delay: float | None):
    from app.config import settings
    from app.scheduler.renewal_sweep import find_policies_to_remind, run_renewal_sweep
    from app.services.notification_gateway import NotificationGateway
    from app.services.policy_store import JsonPolicyStore
    from app.services.renewal.rules import today_local

    store = JsonPolicyStore(store_file or settings.POLICY_STORE_FILE)
    gateway = NotificationGateway(dry_run=True if dry_run else None)
    today = today or today_local()

    print(f"\n=== Renewal sweep for {today.isoformat()} ===")
    print(f"Store: {store.path}")
    print(f"Mode: {'dry run (nothing delivered)' if gateway.dry_run else 'live'}")

    candidates = await find_policies_to_remind(store, today)
    print(f"Candidates: {len(candidates)}")
    for c in candidates:
        print(
            f"  [{c.reminder_type.value:>6}] {c.policy.policy_details.policy_number or c.policy.id}"
            f" expires in {c.days_until_expiry} day(s)"
        )
    print()

    result = await run_renewal_sweep(store, gateway, today=today, send_delay=delay)

    print("\n=== Results ===")
    print(f"Total: {result.total_policies}")
    print(f"Sent: {result.sent}")
    print(f"Failed: {result.failed}")
    print(f"Skipped: {result.skipped}")
    print(f"Duration: {result.duration_seconds:.1f}s")
    if result.error:
        print(f"Error: {result.error}")
        return 1
    for detail in result.details:
        if detail["outcome"] != "sent":
            reason = detail.get("error") or detail.get("reason")
            print(f"  {detail['outcome']}: {detail['policyNumber'] or detail['policyId']} ({reason})")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one renewal reminder sweep")
    parser.add_argument("--store", type=Path, default=None, help="Policy store JSON file")
    parser.add_argument(
        "--date", type=date.fromisoformat, default=None, help="Treat this day as today (YYYY-MM-DD)"
    )
    parser.add_argument("--dry-run", action="store_true", help="Log messages instead of sending")
    parser.add_argument("--delay", type=float, default=None, help="Seconds between sends")
    args = parser.parse_args()
    sys.exit(asyncio.run(run_sweep(args.store, args.date, args.dry_run, args.delay)))
