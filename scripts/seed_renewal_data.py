"""Seed the policy store with sample policies at interesting expiry offsets."""
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.config import settings
from app.models.policy import (
    ClientContact,
    Policy,
    PolicyDetails,
    PolicyStatus,
    PremiumDetails,
    VehicleDetails,
)
from app.services.policy_store import JsonPolicyStore
from app.services.renewal.rules import bucket_for, today_local
from app.services.renewal.service import add_years

# Days from today: overdue past the lookback, recently overdue, due today,
# each ladder step worth watching, and beyond the categorized window
OFFSETS = [-35, -10, -1, 0, 1, 3, 7, 15, 30, 45, 120]
POLICY_TYPES = ["Comprehensive", "Third Party", "Own Damage"]
VEHICLES = [("Toyota", "Innova"), ("Maruti Suzuki", "Swift"), ("Hyundai", "Creta")]


def build_policy(index: int, days: int) -> Policy:
    expiry = today_local() + timedelta(days=days)
    start = add_years(expiry, -1) + timedelta(days=1)
    manufacturer, model = VEHICLES[index % len(VEHICLES)]
    return Policy(
        id=f"seed-{index + 1:02d}",
        status=PolicyStatus.ACTIVE,
        client=ClientContact(
            name=f"Test Client {index + 1}",
            email=f"client{index + 1}@example.com",
            contact_number=f"98765432{index:02d}",
        ),
        insurer="Test Insurer Ltd",
        policy_type=POLICY_TYPES[index % len(POLICY_TYPES)],
        policy_details=PolicyDetails(
            policy_number=f"POL-SEED-{index + 1:03d}",
            period_from=start,
            period_to=expiry,
            insurance_start_date=start,
            insurance_end_date=expiry,
        ),
        premium=PremiumDetails(final_premium=11800),
        vehicle=VehicleDetails(manufacturer=manufacturer, model=model),
    )


async def seed(store_file: Path, reset: bool):
    if reset and store_file.exists():
        store_file.unlink()
        print(f"Removed {store_file}")

    store = JsonPolicyStore(store_file)
    existing = {p.id: p for p in await store.list_all()}

    for index, days in enumerate(OFFSETS):
        policy = build_policy(index, days)
        if policy.id in existing:
            policy.version = existing[policy.id].version
            action = "Updated"
        else:
            action = "Created"
        await store.save(policy)
        print(f"  {action}: {policy.id} [{bucket_for(days).value}] expires in {days} days")

    print(f"Seed complete! {len(OFFSETS)} policies in {store_file}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed sample renewal policies")
    parser.add_argument("--store", type=Path, default=settings.POLICY_STORE_FILE)
    parser.add_argument("--reset", action="store_true", help="Delete the store file first")
    args = parser.parse_args()
    asyncio.run(seed(args.store, args.reset))
