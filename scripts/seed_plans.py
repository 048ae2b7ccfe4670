"""Seed the subscription plan catalogue (idempotent).

Usage examples:
  python scripts/seed_plans.py
  DATABASE_URL=postgresql://... python scripts/seed_plans.py --deactivate-missing
  python scripts/seed_plans.py --file plans.json --dry-run

Behavior:
  - Upserts one row per plan id into subscription_plans.
  - Plan ids must match the FastSpring product paths in PRODUCT_PLAN_MAP.
  - --deactivate-missing flags catalogue rows not in the input as inactive.
  - Safe to re-run.
"""
from __future__ import annotations
import argparse
import json
import os
import sys
from decimal import Decimal
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

sys.path.append(str(Path(__file__).resolve().parents[1]))
from app.models.subscription_plan import SubscriptionPlan  # noqa: E402
from app.services.billing.handlers import PRODUCT_PLAN_MAP  # noqa: E402

DEFAULT_PLANS = [
    {"id": "modulyn-one-plus", "name": "Modulyn One+", "price": "49.00", "max_users": 20},
    {"id": "modulyn-one-pro", "name": "Modulyn One Pro", "price": "99.00", "max_users": None},
]


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--url", default=os.getenv("DATABASE_URL"), help="Database URL (env DATABASE_URL by default)")
    p.add_argument("--file", help="JSON list of plans; defaults to the built-in catalogue")
    p.add_argument("--deactivate-missing", action="store_true", help="Mark plans absent from the input inactive")
    p.add_argument("--dry-run", action="store_true", help="Roll back instead of committing")
    return p.parse_args()


def load_plans(path: str | None):
    if not path:
        return DEFAULT_PLANS
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def main():
    args = parse_args()
    if not args.url:
        print("ERROR: Provide --url or set DATABASE_URL", file=sys.stderr)
        sys.exit(2)

    plans = load_plans(args.file)
    unknown = [p["id"] for p in plans if p["id"] not in PRODUCT_PLAN_MAP.values()]
    if unknown:
        print(f"ERROR: plan ids not mapped from any FastSpring product: {unknown}", file=sys.stderr)
        sys.exit(2)

    print(f"[seed_plans] Connecting to database: {args.url}")
    engine = create_engine(args.url)
    db = sessionmaker(bind=engine)()

    created = updated = 0
    try:
        for entry in plans:
            plan = db.get(SubscriptionPlan, entry["id"])
            if plan is None:
                plan = SubscriptionPlan(id=entry["id"])
                db.add(plan)
                created += 1
            else:
                updated += 1
            plan.name = entry["name"]
            plan.price = Decimal(str(entry["price"]))
            plan.currency = entry.get("currency", "USD")
            plan.billing_interval = entry.get("billing_interval", "month")
            plan.max_users = entry.get("max_users")
            plan.is_active = entry.get("is_active", True)

        deactivated = 0
        if args.deactivate_missing:
            ids = [entry["id"] for entry in plans]
            deactivated = (
                db.query(SubscriptionPlan)
                .filter(SubscriptionPlan.id.notin_(ids), SubscriptionPlan.is_active.is_(True))
                .update({SubscriptionPlan.is_active: False}, synchronize_session=False)
            )

        if args.dry_run:
            db.rollback()
            print("[seed_plans] Dry run; no changes committed")
        else:
            db.commit()
        print(f"[seed_plans] created={created} updated={updated} deactivated={deactivated}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
