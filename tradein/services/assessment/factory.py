"""Select the configured assessment provider variant."""

from tradein.common.cache import ResultCache
from tradein.common.config import CommonSettings
from tradein.services.assessment.providers import (
    AssessmentProvider,
    CachingAssessmentProvider,
    StubAssessmentProvider,
)
from tradein.services.assessment.remote import RemoteAssessmentProvider
from tradein.services.assessment.vision import CloudVisionAssessmentProvider


def build_provider(config: CommonSettings, cache: ResultCache | None = None) -> AssessmentProvider:
    """Build the provider named by `ASSESSMENT_PROVIDER`, optionally cached."""

    kind = config.assessment_provider.lower()
    if kind == "stub":
        provider: AssessmentProvider = StubAssessmentProvider()
    elif kind == "vision":
        provider = CloudVisionAssessmentProvider(
            config.vision_endpoint,
            config.vision_key,
            timeout_seconds=config.assessment_timeout_seconds,
        )
    elif kind == "remote":
        provider = RemoteAssessmentProvider(
            config.remote_assessment_url,
            config.remote_assessment_api_key,
            model=config.remote_assessment_model,
            timeout_seconds=config.assessment_timeout_seconds,
        )
    else:
        raise ValueError(f"unknown assessment provider: {config.assessment_provider}")

    if cache is not None and kind != "stub":
        provider = CachingAssessmentProvider(provider, cache, config.assessment_cache_ttl_seconds)
    return provider
