"""Assessment provider capability plus the offline stub and caching decorator."""

import hashlib
import json
from abc import ABC, abstractmethod

from tradein.common.cache import ResultCache
from tradein.common.errors import AssessmentProviderError
from tradein.common.logging import logger
from tradein.services.assessment.schemas import AssessmentRequest, AssessmentResult, DetectedDamage


class AssessmentProvider(ABC):
    """Analyze device photos and return a normalized `AssessmentResult`."""

    provider_name: str = ""
    model_version: str = ""

    @abstractmethod
    async def analyze(self, images: list[str], context: AssessmentRequest | None = None) -> AssessmentResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class StubAssessmentProvider(AssessmentProvider):
    """Deterministic pseudo-assessment for tests and offline development."""

    provider_name = "stub"
    model_version = "dev"

    async def analyze(self, images: list[str], context: AssessmentRequest | None = None) -> AssessmentResult:
        extra = len(context.additional_context or "") if context else 0
        seed = len(images) + extra
        base_score = 0.75 - (seed % 3) * 0.1
        return AssessmentResult(
            detected_brand="Apple",
            detected_model="iPhone 13",
            detected_type="Smartphone",
            detected_storage=128,
            identification_confidence=0.9,
            overall_condition_score=min(max(base_score, 0.3), 0.95),
            screen_crack_severity=0.1,
            body_dent_severity=0.15,
            back_glass_severity=0.05,
            camera_damage_severity=0.0,
            water_damage_likelihood=0.05,
            cosmetic_issues=["Minor scratches on body"],
            detected_damage=[DetectedDamage(type="Minor Scratches", confidence=0.8, severity=0.15, location="Body")],
            provider_name=self.provider_name,
            model_version=self.model_version,
            processing_time_ms=500,
        )


def cache_key(provider: AssessmentProvider, images: list[str], context: AssessmentRequest | None) -> str:
    """Digest of provider identity, images, and context."""

    material = json.dumps(
        {
            "provider": provider.provider_name,
            "version": provider.model_version,
            "images": sorted(images),
            "context": context.model_dump(exclude={"image_urls"}) if context else None,
        },
        sort_keys=True,
    )
    return "assessment:" + hashlib.sha256(material.encode("utf-8")).hexdigest()


class CachingAssessmentProvider(AssessmentProvider):
    """Wrap a provider with an injected TTL cache of successful results.

    Degraded results are never cached so a later attempt can still succeed.
    """

    def __init__(self, inner: AssessmentProvider, cache: ResultCache, ttl_seconds: int) -> None:
        self.inner = inner
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.provider_name = inner.provider_name
        self.model_version = inner.model_version

    async def analyze(self, images: list[str], context: AssessmentRequest | None = None) -> AssessmentResult:
        key = cache_key(self.inner, images, context)
        try:
            cached = self.cache.get(key)
        except Exception as exc:
            logger.warning("assessment_cache_read_failed key=%s error=%s", key, exc)
            cached = None
        if cached is not None:
            logger.info("assessment_cache_hit key=%s", key)
            return AssessmentResult.model_validate(cached)

        result = await self.inner.analyze(images, context)
        if not result.requires_manual_review:
            try:
                self.cache.set(key, result.model_dump(mode="json"), self.ttl_seconds)
            except Exception as exc:
                logger.warning("assessment_cache_write_failed key=%s error=%s", key, exc)
        return result

    async def aclose(self) -> None:
        await self.inner.aclose()


def error_for_status(status_code: int, service: str) -> AssessmentProviderError:
    """Categorise a non-2xx provider response."""

    if status_code in (401, 403):
        return AssessmentProviderError(f"{service}: invalid API key or authentication failed", "auth_failed")
    if status_code in (400, 422):
        return AssessmentProviderError(f"{service}: invalid request format or parameters", "bad_request")
    if status_code == 429:
        return AssessmentProviderError(f"{service}: rate limit exceeded", "rate_limited")
    if status_code == 503:
        return AssessmentProviderError(f"{service}: service is under maintenance", "service_unavailable")
    if status_code >= 500:
        return AssessmentProviderError(f"{service}: service is temporarily unavailable", "service_unavailable")
    return AssessmentProviderError(f"{service}: unexpected status {status_code}", "upstream_error")
