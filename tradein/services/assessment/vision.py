"""Generic cloud image-tagging provider.

The tagging service knows nothing about devices: tags and captions are mapped
onto the damage taxonomy by keyword, and brand/model stay "Unknown".
"""

import time

import httpx

from tradein.common.errors import AssessmentProviderError
from tradein.common.logging import logger
from tradein.services.assessment.providers import AssessmentProvider, error_for_status
from tradein.services.assessment.schemas import UNKNOWN, AssessmentRequest, AssessmentResult, DetectedDamage

DAMAGE_KEYWORDS = ("crack", "broken", "shatter", "scratch", "scuff", "dent", "bent", "damage", "water", "rust")

# keyword -> (result field, severity flagged when present)
SEVERITY_FLAGS: list[tuple[tuple[str, ...], str, float]] = [
    (("crack", "shatter", "broken"), "screen_crack_severity", 0.8),
    (("dent", "bent"), "body_dent_severity", 0.6),
    (("glass",), "back_glass_severity", 0.7),
    (("camera", "lens"), "camera_damage_severity", 0.5),
    (("water", "liquid", "rust", "corrosion"), "water_damage_likelihood", 0.9),
]


def deduce_damage(tags: list[dict], caption: str | None) -> list[DetectedDamage]:
    """Turn damage-related tags (and caption words) into damage findings."""

    damages: list[DetectedDamage] = []
    for tag in tags:
        name = str(tag.get("name", "")).lower()
        confidence = float(tag.get("confidence", 0.0))
        if any(keyword in name for keyword in DAMAGE_KEYWORDS):
            confidence = min(max(confidence, 0.0), 1.0)
            # Confidence doubles as a severity approximation.
            damages.append(DetectedDamage(type=name, confidence=confidence, severity=confidence, location=UNKNOWN))
    if caption:
        seen = {d.type for d in damages}
        for word in caption.lower().replace(",", " ").split():
            if word not in seen and any(keyword in word for keyword in DAMAGE_KEYWORDS):
                damages.append(DetectedDamage(type=word, confidence=0.5, severity=0.5, location=UNKNOWN))
                seen.add(word)
    return damages


def condition_score(damages: list[DetectedDamage]) -> float:
    if not damages:
        return 1.0
    average = sum(d.severity for d in damages) / len(damages)
    return max(0.0, 1.0 - average)


class CloudVisionAssessmentProvider(AssessmentProvider):
    """Calls an image-analysis endpoint for tags + caption on each photo."""

    provider_name = "azure-vision"
    model_version = "ImageAnalysis-2023-10-01"

    def __init__(
        self,
        endpoint: str,
        key: str,
        timeout_seconds: float = 30.0,
        max_images: int = 4,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint or not key:
            raise ValueError("vision endpoint and key must be configured")
        self.endpoint = endpoint.rstrip("/")
        self.key = key
        self.max_images = max_images
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def _analyze_image(self, url: str) -> tuple[list[dict], str | None]:
        try:
            resp = await self.client.post(
                f"{self.endpoint}/computervision/imageanalysis:analyze",
                params={"api-version": "2023-10-01", "features": "tags,caption", "gender-neutral-caption": "true"},
                headers={"Ocp-Apim-Subscription-Key": self.key},
                json={"url": url},
            )
        except httpx.TimeoutException as exc:
            raise AssessmentProviderError(f"vision analysis timed out: {exc}", "timeout") from exc
        except httpx.TransportError as exc:
            raise AssessmentProviderError(f"vision network error: {exc}", "network") from exc
        if resp.status_code >= 400:
            raise error_for_status(resp.status_code, "vision")
        try:
            body = resp.json()
            tags = list(body.get("tagsResult", {}).get("values", []))
            caption = (body.get("captionResult") or {}).get("text")
        except (ValueError, AttributeError, TypeError) as exc:
            raise AssessmentProviderError("invalid response format from vision service", "malformed_response") from exc
        return tags, caption

    async def analyze(self, images: list[str], context: AssessmentRequest | None = None) -> AssessmentResult:
        if not images:
            raise AssessmentProviderError("no image URLs provided", "bad_request")
        started = time.perf_counter()
        all_tags: list[dict] = []
        damages: list[DetectedDamage] = []
        for url in images[: self.max_images]:
            tags, caption = await self._analyze_image(url)
            all_tags.extend(tags)
            damages.extend(deduce_damage(tags, caption))

        severities = {field: 0.0 for _, field, _ in SEVERITY_FLAGS}
        for keywords, field, flagged in SEVERITY_FLAGS:
            if any(any(k in d.type for k in keywords) for d in damages):
                severities[field] = flagged

        confidences = [float(t.get("confidence", 0.0)) for t in all_tags]
        identification = sum(confidences) / len(confidences) if confidences else 0.0
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("vision analysis done images=%s damages=%s elapsed_ms=%s", len(images), len(damages), elapsed_ms)
        return AssessmentResult(
            detected_brand=UNKNOWN,
            detected_model=UNKNOWN,
            detected_type=UNKNOWN,
            identification_confidence=min(max(identification, 0.0), 1.0),
            overall_condition_score=condition_score(damages),
            functional_issues=[d.type for d in damages if "functional" in d.type],
            cosmetic_issues=[d.type for d in damages if "functional" not in d.type],
            detected_damage=damages,
            provider_name=self.provider_name,
            model_version=self.model_version,
            processing_time_ms=elapsed_ms,
            **severities,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
