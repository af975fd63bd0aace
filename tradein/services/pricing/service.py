"""Catalog resolution and offer pricing.

Every percentage adjustment is taken off the original base price, never off
a running total, so the order rules are applied in cannot change a quote.
"""

import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select

from tradein.common.clock import utcnow
from tradein.common.logging import logger
from tradein.services.assessment.schemas import AssessmentResult
from tradein.services.pricing.models import BasePrice, DeviceCatalogEntry, PriceAdjustmentRule
from tradein.services.pricing.schemas import PriceQuote

# First hit wins; order matters.
MODEL_ALIASES = {
    "apple iphone": "iphone",
    "samsung galaxy": "galaxy",
    "samsung s": "galaxy s",
    "iphone13": "iphone 13",
    "iphone 13 5g": "iphone 13",
    "iphone 13 mini": "iphone 13 mini",
    "iphone 13 pro": "iphone 13 pro",
    "iphone 13 pro max": "iphone 13 pro max",
    "galaxy s21": "galaxy s21",
    "galaxy s22": "galaxy s22",
    "galaxy s23": "galaxy s23",
    "pixel 6": "pixel 6",
    "pixel 7": "pixel 7",
    "pixel 8": "pixel 8",
}

STORAGE_RE = re.compile(r"(\d+)\s?(gb|g|tb)", re.IGNORECASE)
PUNCT_RE = re.compile(r"[^\w\s]")
SPACE_RE = re.compile(r"\s+")

# (min score, label, fraction of base)
CONDITION_TIERS = [
    (0.90, "Mint", "0.15"),
    (0.75, "Great", "0.05"),
    (0.60, "Good", "0"),
    (0.40, "Fair", "-0.25"),
]
CONDITION_FLOOR = ("Poor", "-0.50")

# (field, breakdown prefix, apply above, [(max severity, label, fraction)], else)
DAMAGE_TIERS = [
    (
        "screen_crack_severity",
        "Screen",
        0.0,
        [(0.2, "Minor", "-0.05"), (0.5, "Moderate", "-0.15")],
        ("Severe", "-0.35"),
    ),
    (
        "body_dent_severity",
        "Body",
        0.0,
        [(0.2, "Light", "-0.03"), (0.5, "Moderate", "-0.10")],
        ("Heavy", "-0.25"),
    ),
    (
        "back_glass_severity",
        "BackGlass",
        0.0,
        [(0.3, "Minor", "-0.08"), (0.6, "Moderate", "-0.20")],
        ("Severe", "-0.40"),
    ),
    (
        "camera_damage_severity",
        "Camera",
        0.0,
        [(0.3, "Minor", "-0.10"), (0.6, "Moderate", "-0.25")],
        ("Severe", "-0.50"),
    ),
    (
        "water_damage_likelihood",
        "Water",
        0.2,
        [(0.4, "Possible", "-0.15"), (0.7, "Likely", "-0.35")],
        ("VeryLikely", "-0.70"),
    ),
]

STORAGE_BUCKET_GB = 64
STORAGE_STEP_CENTS = 5000


def percent_of(base_cents: int, fraction: str | Decimal) -> int:
    """`base * fraction`, rounded half-up to the cent."""

    return int((Decimal(base_cents) * Decimal(fraction)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_model(text: str) -> tuple[str, int | None]:
    """Lower-case, strip storage tokens and punctuation, apply the alias table.

    Returns the cleaned model string and any storage size (GB) it carried.
    """

    clean = text.strip().lower()
    storage_gb = None
    match = STORAGE_RE.search(clean)
    if match:
        storage_gb = int(match.group(1))
        if match.group(2).lower() == "tb":
            storage_gb *= 1024
        clean = STORAGE_RE.sub("", clean).strip()

    clean = PUNCT_RE.sub(" ", clean)
    clean = SPACE_RE.sub(" ", clean).strip()

    for alias, replacement in MODEL_ALIASES.items():
        if alias in clean:
            clean = clean.replace(alias, replacement)
            break
    return clean, storage_gb


def storage_adjustment_cents(expected_gb: int, detected_gb: int) -> int:
    """Flat R50 per whole 64GB of difference; positive when more was detected."""

    diff = detected_gb - expected_gb
    # Truncates toward zero, so a 32GB shortfall costs nothing.
    return int(diff / STORAGE_BUCKET_GB) * STORAGE_STEP_CENTS


class PricingEngine:
    """Turns a normalized assessment into a `PriceQuote` against the catalog."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def resolve_catalog_model(self, db, detected_model: str | None) -> DeviceCatalogEntry | None:
        if not detected_model or not detected_model.strip():
            return None
        normalized, _ = normalize_model(detected_model)
        if not normalized:
            return None

        exact = db.execute(
            select(DeviceCatalogEntry)
            .where(func.lower(DeviceCatalogEntry.model) == normalized)
            .order_by(DeviceCatalogEntry.id)
            .limit(1)
        ).scalar_one_or_none()
        if exact is not None:
            return exact

        parts = normalized.split(" ")
        if len(parts) >= 2:
            brand, model = parts[0], " ".join(parts[1:])
            fuzzy = db.execute(
                select(DeviceCatalogEntry)
                .where(
                    func.lower(DeviceCatalogEntry.brand).contains(brand, autoescape=True),
                    func.lower(DeviceCatalogEntry.model).contains(model, autoescape=True),
                )
                .order_by(DeviceCatalogEntry.id)
                .limit(1)
            ).scalar_one_or_none()
            if fuzzy is not None:
                return fuzzy

        for entry in db.execute(select(DeviceCatalogEntry).order_by(DeviceCatalogEntry.id)).scalars():
            candidate = entry.model.lower()
            if normalized in candidate or candidate in normalized:
                return entry
        return None

    def latest_base_price(self, db, entry_id: int) -> BasePrice | None:
        return db.execute(
            select(BasePrice)
            .where(BasePrice.catalog_entry_id == entry_id)
            .order_by(BasePrice.as_of.desc(), BasePrice.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def quote(
        self,
        assessment: AssessmentResult,
        expected_storage_gb: int | None = None,
        model_hint: str | None = None,
    ) -> PriceQuote | None:
        """Price an assessment; None when no catalog entry or base price exists.

        `model_hint` (the customer's declared brand and model) is used only when
        the provider could not identify the device.
        """

        detected = assessment.identified_model or model_hint
        with self.session_factory() as db:
            entry = self.resolve_catalog_model(db, detected)
            if entry is None:
                logger.info("pricing no catalog match detected_model=%s", detected)
                return None
            base = self.latest_base_price(db, entry.id)
            if base is None:
                logger.info("pricing no base price catalog_entry_id=%s", entry.id)
                return None
            rules = self._matching_rules(db, entry)

            quote = PriceQuote(
                catalog_entry_id=entry.id,
                catalog_model_name=f"{entry.brand} {entry.model}",
                base_price_cents=base.price_cents,
            )
            self._apply_condition(quote, assessment)
            self._apply_damage(quote, assessment)

            _, parsed_storage = normalize_model(detected or "")
            detected_storage = assessment.detected_storage or parsed_storage
            if expected_storage_gb and detected_storage and expected_storage_gb != detected_storage:
                quote.add("Storage:Difference", storage_adjustment_cents(expected_storage_gb, detected_storage))

            for rule in rules:
                amount = percent_of(base.price_cents, Decimal(str(rule.multiplier)) - 1)
                amount -= rule.flat_deduction_cents or 0
                quote.add(f"Rule:{rule.code}", amount)

        logger.info(
            "quote computed model=%s base_cents=%s final_cents=%s",
            quote.catalog_model_name,
            quote.base_price_cents,
            quote.final_price_cents,
        )
        return quote

    def _matching_rules(self, db, entry: DeviceCatalogEntry) -> list[PriceAdjustmentRule]:
        targets = {"any", entry.brand.lower(), entry.device_type.lower()}
        rules = db.execute(
            select(PriceAdjustmentRule)
            .where(PriceAdjustmentRule.is_active.is_(True))
            .order_by(PriceAdjustmentRule.code)
        ).scalars()
        return [rule for rule in rules if rule.applies_to.lower() in targets]

    @staticmethod
    def _apply_condition(quote: PriceQuote, assessment: AssessmentResult) -> None:
        score = assessment.overall_condition_score
        label, fraction = CONDITION_FLOOR
        for minimum, tier_label, tier_fraction in CONDITION_TIERS:
            if score >= minimum:
                label, fraction = tier_label, tier_fraction
                break
        quote.add(f"Condition:{label}", percent_of(quote.base_price_cents, fraction))

    @staticmethod
    def _apply_damage(quote: PriceQuote, assessment: AssessmentResult) -> None:
        for field, prefix, threshold, tiers, worst in DAMAGE_TIERS:
            severity = getattr(assessment, field)
            if severity <= threshold:
                continue
            label, fraction = worst
            for ceiling, tier_label, tier_fraction in tiers:
                if severity <= ceiling:
                    label, fraction = tier_label, tier_fraction
                    break
            quote.add(f"{prefix}:{label}", percent_of(quote.base_price_cents, fraction))

    def add_base_price(self, entry_id: int, price_cents: int, as_of: datetime | None = None) -> BasePrice:
        """Record a new base price snapshot; the latest `as_of` wins."""

        if price_cents <= 0:
            raise ValueError("base price must be positive")
        with self.session_factory() as db:
            if db.get(DeviceCatalogEntry, entry_id) is None:
                raise ValueError(f"unknown catalog entry {entry_id}")
            row = BasePrice(catalog_entry_id=entry_id, price_cents=price_cents, as_of=as_of or utcnow())
            db.add(row)
            db.commit()
            logger.info("base price recorded catalog_entry_id=%s price_cents=%s", entry_id, price_cents)
            return row

    def upsert_catalog_entry(
        self,
        brand: str,
        model: str,
        release_year: int,
        device_type: str = "Smartphone",
        storage_gb: int | None = None,
    ) -> DeviceCatalogEntry:
        with self.session_factory() as db:
            entry = db.execute(
                select(DeviceCatalogEntry).where(
                    func.lower(DeviceCatalogEntry.brand) == brand.lower(),
                    func.lower(DeviceCatalogEntry.model) == model.lower(),
                    DeviceCatalogEntry.storage_gb.is_(None)
                    if storage_gb is None
                    else DeviceCatalogEntry.storage_gb == storage_gb,
                )
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                entry = DeviceCatalogEntry(
                    brand=brand, model=model, device_type=device_type, release_year=release_year, storage_gb=storage_gb
                )
                db.add(entry)
                db.commit()
            return entry

    def upsert_rule(
        self,
        code: str,
        multiplier: Decimal | str = "1",
        applies_to: str = "ANY",
        flat_deduction_cents: int | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> PriceAdjustmentRule:
        with self.session_factory() as db:
            rule = db.execute(select(PriceAdjustmentRule).where(PriceAdjustmentRule.code == code)).scalar_one_or_none()
            if rule is None:
                rule = PriceAdjustmentRule(code=code)
                db.add(rule)
            rule.multiplier = Decimal(str(multiplier))
            rule.applies_to = applies_to
            rule.flat_deduction_cents = flat_deduction_cents
            rule.description = description
            rule.is_active = is_active
            db.commit()
            return rule
