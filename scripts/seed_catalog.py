"""Seed the device catalog with base prices (and optional pricing rules)."""

import argparse

from tradein.common.db import SessionLocal
from tradein.services.pricing.service import PricingEngine

# (brand, model, release year, storage GB, base price in cents)
DEFAULT_CATALOG = [
    ("Apple", "iPhone 13", 2021, 128, 1_200_000),
    ("Apple", "iPhone 13 Mini", 2021, 128, 1_000_000),
    ("Apple", "iPhone 13 Pro", 2021, 128, 1_500_000),
    ("Apple", "iPhone 13 Pro Max", 2021, 128, 1_700_000),
    ("Samsung", "Galaxy S21", 2021, 128, 800_000),
    ("Samsung", "Galaxy S22", 2022, 128, 1_000_000),
    ("Samsung", "Galaxy S23", 2023, 256, 1_300_000),
    ("Google", "Pixel 6", 2021, 128, 650_000),
    ("Google", "Pixel 7", 2022, 128, 800_000),
    ("Google", "Pixel 8", 2023, 128, 1_050_000),
]


def parse_rule(raw: str) -> tuple[str, str, str]:
    """`CODE:MULTIPLIER[:APPLIES_TO]`, e.g. `SAMSUNG_PROMO:1.05:Samsung`."""

    parts = raw.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError("rule must look like CODE:MULTIPLIER[:APPLIES_TO]")
    return parts[0], parts[1], parts[2] if len(parts) == 3 else "ANY"


def main() -> None:
    """CLI entrypoint for catalog seeding."""

    parser = argparse.ArgumentParser(description="Seed device catalog and base prices.")
    parser.add_argument("--rule", action="append", type=parse_rule, default=[], help="CODE:MULTIPLIER[:APPLIES_TO]")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    if args.dry_run:
        for brand, model, year, storage, price in DEFAULT_CATALOG:
            print(f"{brand} {model} ({year}, {storage}GB) R{price / 100:,.2f}")
        for code, multiplier, applies_to in args.rule:
            print(f"rule {code} x{multiplier} applies_to={applies_to}")
        return

    engine = PricingEngine(SessionLocal)
    for brand, model, year, storage, price in DEFAULT_CATALOG:
        entry = engine.upsert_catalog_entry(brand, model, year, storage_gb=storage)
        current = None
        with SessionLocal() as db:
            current = engine.latest_base_price(db, entry.id)
        if current is None or current.price_cents != price:
            engine.add_base_price(entry.id, price)
        print(f"seeded {brand} {model} id={entry.id}")
    for code, multiplier, applies_to in args.rule:
        engine.upsert_rule(code, multiplier, applies_to=applies_to)
        print(f"seeded rule {code}")


if __name__ == "__main__":
    main()
