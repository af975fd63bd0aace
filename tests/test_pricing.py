"""Pricing engine: catalog resolution, tier adjustments, determinism."""

from tradein.services.assessment.schemas import AssessmentResult
from tradein.services.pricing.grading import grade_explanation, to_grade
from tradein.services.pricing.service import normalize_model, storage_adjustment_cents


def mint(**overrides) -> AssessmentResult:
    values = {"detected_model": "iphone13 128gb", "overall_condition_score": 0.95}
    values.update(overrides)
    return AssessmentResult(**values)


def test_normalize_strips_storage_and_applies_alias():
    assert normalize_model("iphone13 128gb") == ("iphone 13", 128)
    assert normalize_model("Apple iPhone 13 (Blue)") == ("iphone 13 blue", None)
    assert normalize_model("Samsung Galaxy S22, 256 GB") == ("galaxy s22", 256)


def test_resolves_free_text_model(session_factory, catalog):
    engine = catalog["engine"]
    with session_factory() as db:
        assert engine.resolve_catalog_model(db, "iphone13 128gb").id == catalog["iphone"].id
        assert engine.resolve_catalog_model(db, "Samsung Galaxy S22").id == catalog["galaxy"].id
        assert engine.resolve_catalog_model(db, "Nokia 3310") is None
        assert engine.resolve_catalog_model(db, "") is None


def test_mint_condition_quote(catalog):
    quote = catalog["engine"].quote(mint())

    assert quote.base_price_cents == 1_200_000
    assert quote.breakdown == {"Condition:Mint": 180_000}
    assert quote.final_price_cents == 1_380_000


def test_screen_damage_is_taken_off_original_base(catalog):
    quote = catalog["engine"].quote(mint(screen_crack_severity=0.6))

    assert quote.breakdown["Screen:Severe"] == -420_000
    assert quote.final_price_cents == 960_000


def test_every_defect_tier_uses_base_price(catalog):
    quote = catalog["engine"].quote(
        mint(
            overall_condition_score=0.5,
            screen_crack_severity=0.2,
            body_dent_severity=0.4,
            back_glass_severity=0.7,
            camera_damage_severity=0.3,
            water_damage_likelihood=0.2,
        )
    )

    assert quote.breakdown == {
        "Condition:Fair": -300_000,
        "Screen:Minor": -60_000,
        "Body:Moderate": -120_000,
        "BackGlass:Severe": -480_000,
        "Camera:Minor": -120_000,
    }
    assert quote.final_price_cents == 120_000


def test_quote_may_go_negative(catalog):
    quote = catalog["engine"].quote(
        mint(overall_condition_score=0.1, screen_crack_severity=0.9, water_damage_likelihood=0.9)
    )

    assert quote.final_price_cents < 0


def test_quote_is_deterministic(catalog):
    assessment = mint(body_dent_severity=0.33, camera_damage_severity=0.61, water_damage_likelihood=0.45)
    first = catalog["engine"].quote(assessment, expected_storage_gb=256)
    second = catalog["engine"].quote(assessment, expected_storage_gb=256)

    assert first.breakdown == second.breakdown
    assert first.final_price_cents == second.final_price_cents


def test_storage_difference_in_64gb_steps(catalog):
    quote = catalog["engine"].quote(mint(detected_storage=256), expected_storage_gb=128)

    assert quote.breakdown["Storage:Difference"] == 10_000
    assert storage_adjustment_cents(128, 64) == -5_000
    assert storage_adjustment_cents(128, 96) == 0


def test_model_hint_used_when_provider_cannot_identify(catalog):
    unknown = AssessmentResult(detected_model="Unknown", overall_condition_score=0.7)

    assert catalog["engine"].quote(unknown) is None
    quote = catalog["engine"].quote(unknown, model_hint="Samsung Galaxy S22")
    assert quote.catalog_model_name == "Samsung Galaxy S22"
    assert quote.final_price_cents == 1_000_000


def test_latest_base_price_wins(catalog):
    engine = catalog["engine"]
    engine.add_base_price(catalog["iphone"].id, 1_100_000)

    assert engine.quote(mint(overall_condition_score=0.7)).base_price_cents == 1_100_000


def test_catalog_rules_apply_off_base(catalog):
    engine = catalog["engine"]
    engine.upsert_rule("APPLE_PROMO", "1.05", applies_to="Apple")
    engine.upsert_rule("HANDLING_FEE", "1", applies_to="ANY", flat_deduction_cents=5_000)
    engine.upsert_rule("SAMSUNG_ONLY", "0.5", applies_to="Samsung")

    quote = engine.quote(mint(overall_condition_score=0.7))

    assert quote.breakdown == {"Rule:APPLE_PROMO": 60_000, "Rule:HANDLING_FEE": -5_000, "Condition:Good": 0}
    assert quote.final_price_cents == 1_255_000


def test_grades():
    assert to_grade(mint()) == "A"
    assert to_grade(mint(overall_condition_score=0.7)) == "B"
    assert to_grade(mint(screen_crack_severity=1.0, body_dent_severity=1.0)) == "C"
    assert to_grade(mint(overall_condition_score=0.2)) == "D"
    assert "Screen damage detected (60%)" in grade_explanation(mint(screen_crack_severity=0.6))
