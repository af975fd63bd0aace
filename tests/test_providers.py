"""Assessment provider variants against mocked HTTP transports."""

import json

import httpx
import pytest

from tradein.common.config import settings
from tradein.common.errors import AssessmentProviderError
from tradein.services.assessment.factory import build_provider
from tradein.services.assessment.providers import (
    AssessmentProvider,
    CachingAssessmentProvider,
    StubAssessmentProvider,
)
from tradein.services.assessment.remote import RemoteAssessmentProvider
from tradein.services.assessment.schemas import AssessmentRequest, AssessmentResult
from tradein.services.assessment.vision import CloudVisionAssessmentProvider

PHOTOS = ["https://cdn.example/front.jpg", "https://cdn.example/back.jpg"]


def remote_with(handler) -> RemoteAssessmentProvider:
    client = httpx.AsyncClient(base_url="http://trae.test", transport=httpx.MockTransport(handler))
    return RemoteAssessmentProvider("http://trae.test", "secret", model="trae-v2", client=client)


class DictCache:
    def __init__(self) -> None:
        self.values = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ttl_seconds):
        self.values[key] = value


class CountingProvider(AssessmentProvider):
    provider_name = "counting"
    model_version = "1"

    def __init__(self, result: AssessmentResult) -> None:
        self.calls = 0
        self.result = result

    async def analyze(self, images, context=None):
        self.calls += 1
        return self.result


async def test_stub_is_deterministic():
    provider = StubAssessmentProvider()
    first = await provider.analyze(PHOTOS)
    second = await provider.analyze(PHOTOS)

    assert first.overall_condition_score == second.overall_condition_score
    assert first.identified_model == "iPhone 13"
    assert 0.3 <= first.overall_condition_score <= 0.95


async def test_remote_success_is_normalized():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["model"] = request.headers["x-model-version"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "request_id": "r-1",
                "assessment": {
                    "detected_brand": "Apple",
                    "detected_model": "iPhone 13",
                    "identification_confidence": 0.97,
                    "screen_crack_severity": 0.1,
                    "overall_condition_score": 0.88,
                },
            },
        )

    provider = remote_with(handler)
    result = await provider.analyze(PHOTOS, AssessmentRequest(device_brand="Apple", device_model="iPhone 13"))

    assert seen["auth"] == "Bearer secret"
    assert seen["model"] == "trae-v2"
    assert seen["body"]["image_urls"] == PHOTOS
    assert result.provider_name == "trae-ai"
    assert result.overall_condition_score == 0.88
    assert result.failure_kind is None
    assert not result.requires_manual_review


@pytest.mark.parametrize(
    "status,kind",
    [(401, "auth_failed"), (400, "bad_request"), (429, "rate_limited"), (503, "service_unavailable")],
)
async def test_remote_http_errors_degrade(status, kind):
    provider = remote_with(lambda request: httpx.Response(status, text="nope"))
    result = await provider.analyze(PHOTOS)

    assert result.failure_kind == kind
    assert result.requires_manual_review
    assert result.identification_confidence == 0.0
    assert result.screen_crack_severity == 0.5
    assert result.overall_condition_score == 0.5


async def test_remote_timeout_degrades_as_retryable_kind():
    def handler(request):
        raise httpx.ReadTimeout("slow upstream", request=request)

    result = await remote_with(handler).analyze(PHOTOS)

    assert result.failure_kind == "timeout"
    assert AssessmentProviderError("x", result.failure_kind).retryable


async def test_remote_malformed_body_degrades():
    result = await remote_with(lambda request: httpx.Response(200, content=b"<html>")).analyze(PHOTOS)

    assert result.failure_kind == "malformed_response"


async def test_vision_maps_tags_to_damage():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["ocp-apim-subscription-key"] == "vkey"
        return httpx.Response(
            200,
            json={
                "captionResult": {"text": "a phone with a cracked screen"},
                "tagsResult": {
                    "values": [
                        {"name": "cracked screen", "confidence": 0.9},
                        {"name": "phone", "confidence": 0.95},
                    ]
                },
            },
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = CloudVisionAssessmentProvider("https://vision.test/", "vkey", client=client)
    result = await provider.analyze(PHOTOS[:1])

    assert result.screen_crack_severity == 0.8
    assert result.body_dent_severity == 0.0
    assert result.identified_model is None
    assert result.overall_condition_score == pytest.approx(0.3)


async def test_vision_rate_limit_raises_retryable():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429)))
    provider = CloudVisionAssessmentProvider("https://vision.test", "vkey", client=client)

    with pytest.raises(AssessmentProviderError) as excinfo:
        await provider.analyze(PHOTOS)
    assert excinfo.value.kind == "rate_limited"
    assert excinfo.value.retryable


async def test_cache_serves_repeat_requests():
    inner = CountingProvider(AssessmentResult(detected_model="Pixel 7", overall_condition_score=0.8))
    provider = CachingAssessmentProvider(inner, DictCache(), ttl_seconds=60)

    first = await provider.analyze(PHOTOS)
    second = await provider.analyze(list(reversed(PHOTOS)))

    assert inner.calls == 1
    assert second.detected_model == first.detected_model


async def test_cache_skips_degraded_results():
    degraded = AssessmentResult(requires_manual_review=True, failure_kind="timeout")
    inner = CountingProvider(degraded)
    cache = DictCache()
    provider = CachingAssessmentProvider(inner, cache, ttl_seconds=60)

    await provider.analyze(PHOTOS)
    await provider.analyze(PHOTOS)

    assert inner.calls == 2
    assert cache.values == {}


def test_factory_selects_variant():
    assert isinstance(build_provider(settings.model_copy(update={"assessment_provider": "stub"})), StubAssessmentProvider)
    remote = build_provider(settings.model_copy(update={"assessment_provider": "remote"}), cache=DictCache())
    assert isinstance(remote, CachingAssessmentProvider)
    assert isinstance(remote.inner, RemoteAssessmentProvider)
    with pytest.raises(ValueError):
        build_provider(settings.model_copy(update={"assessment_provider": "crystal-ball"}))
