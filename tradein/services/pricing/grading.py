"""Deterministic letter grades (A-D) from assessment signals."""

from tradein.services.assessment.schemas import AssessmentResult

DAMAGE_WEIGHTS = {
    "screen_crack_severity": 0.35,
    "body_dent_severity": 0.20,
    "back_glass_severity": 0.15,
    "camera_damage_severity": 0.15,
    "water_damage_likelihood": 0.15,
}

GRADE_THRESHOLDS = [(0.15, "A"), (0.35, "B"), (0.60, "C")]

GRADE_DESCRIPTIONS = {
    "A": "Excellent condition - minimal wear and tear",
    "B": "Good condition - minor cosmetic issues",
    "C": "Fair condition - noticeable damage but functional",
    "D": "Poor condition - significant damage affecting value",
}


def damage_score(assessment: AssessmentResult) -> float:
    """Weighted damage in [0, 1]; the worse of weighted defects and overall score."""

    weighted = sum(getattr(assessment, field) * weight for field, weight in DAMAGE_WEIGHTS.items())
    return max(weighted, 1.0 - assessment.overall_condition_score)


def to_grade(assessment: AssessmentResult) -> str:
    score = damage_score(assessment)
    for ceiling, grade in GRADE_THRESHOLDS:
        if score <= ceiling:
            return grade
    return "D"


def grade_explanation(assessment: AssessmentResult) -> str:
    explanation = GRADE_DESCRIPTIONS[to_grade(assessment)]
    issues = []
    if assessment.screen_crack_severity > 0.3:
        issues.append(f"Screen damage detected ({assessment.screen_crack_severity:.0%})")
    if assessment.body_dent_severity > 0.3:
        issues.append(f"Body damage detected ({assessment.body_dent_severity:.0%})")
    if assessment.back_glass_severity > 0.3:
        issues.append(f"Back glass damage detected ({assessment.back_glass_severity:.0%})")
    if assessment.camera_damage_severity > 0.3:
        issues.append(f"Camera damage detected ({assessment.camera_damage_severity:.0%})")
    if assessment.water_damage_likelihood > 0.5:
        issues.append(f"Possible water damage ({assessment.water_damage_likelihood:.0%} likelihood)")
    if issues:
        explanation += ". Issues found: " + ", ".join(issues)
    return explanation
