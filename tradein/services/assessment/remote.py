"""Device-specific remote AI assessment service over HTTP.

Any failure (timeout, cancellation, HTTP error, malformed body) is turned into
a degraded result flagged for manual review instead of an exception. The
failure kind travels on the result so the worker can still decide whether a
retry is worthwhile.
"""

import asyncio
import time

import httpx
from pydantic import BaseModel, ValidationError

from tradein.common.errors import AssessmentProviderError
from tradein.common.logging import logger
from tradein.services.assessment.providers import AssessmentProvider, error_for_status
from tradein.services.assessment.schemas import AssessmentRequest, AssessmentResult


class RemoteAssessmentResponse(BaseModel):
    """Envelope returned by the remote `/analyze` endpoint."""

    success: bool = False
    assessment: AssessmentResult | None = None
    error: str | None = None
    request_id: str | None = None


class RemoteAssessmentProvider(AssessmentProvider):
    provider_name = "trae-ai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str = "trae-v1",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model_version = model
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def _call(self, request: AssessmentRequest) -> AssessmentResult:
        try:
            resp = await self.client.post(
                "/analyze",
                json=request.model_dump(mode="json"),
                headers={"Authorization": f"Bearer {self.api_key}", "X-Model-Version": self.model_version},
            )
        except httpx.TimeoutException as exc:
            raise AssessmentProviderError(f"analysis timed out: {exc}", "timeout") from exc
        except httpx.TransportError as exc:
            raise AssessmentProviderError(f"network error: {exc}", "network") from exc

        if resp.status_code >= 400:
            logger.error("remote assessment returned status=%s body=%s", resp.status_code, resp.text[:500])
            raise error_for_status(resp.status_code, "remote assessment")

        try:
            envelope = RemoteAssessmentResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise AssessmentProviderError("invalid response format from remote assessment", "malformed_response") from exc
        if not envelope.success or envelope.assessment is None:
            raise AssessmentProviderError(
                f"remote analysis failed: {envelope.error or 'unknown error'}", "upstream_error", retryable=False
            )
        return envelope.assessment

    async def analyze(self, images: list[str], context: AssessmentRequest | None = None) -> AssessmentResult:
        request = (context or AssessmentRequest()).model_copy(update={"image_urls": list(images)})
        started = time.perf_counter()
        logger.info("remote assessment started images=%s", len(images))
        try:
            result = await self._call(request)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # Shutdown or the caller's timeout; let it propagate.
                raise
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.warning("remote assessment cancelled after %sms", elapsed)
            return self._degraded(elapsed, "cancelled", "analysis was cancelled")
        except AssessmentProviderError as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.error("remote assessment failed kind=%s after %sms: %s", exc.kind, elapsed, exc)
            return self._degraded(elapsed, exc.kind, str(exc))
        except Exception as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.exception("unexpected remote assessment error after %sms", elapsed)
            return self._degraded(elapsed, "upstream_error", f"unexpected error: {exc}")

        elapsed = int((time.perf_counter() - started) * 1000)
        logger.info(
            "remote assessment completed in %sms confidence=%.2f", elapsed, result.identification_confidence
        )
        return result.model_copy(
            update={
                "provider_name": self.provider_name,
                "model_version": self.model_version,
                "processing_time_ms": elapsed,
            }
        )

    def _degraded(self, elapsed_ms: int, kind: str, reason: str) -> AssessmentResult:
        # Assume moderate damage across the board when nothing could be assessed.
        return AssessmentResult(
            identification_confidence=0.0,
            screen_crack_severity=0.5,
            body_dent_severity=0.5,
            back_glass_severity=0.5,
            camera_damage_severity=0.5,
            water_damage_likelihood=0.5,
            overall_condition_score=0.5,
            functional_issues=[f"Analysis failed: {reason} - manual review required"],
            provider_name=self.provider_name,
            model_version=self.model_version,
            processing_time_ms=elapsed_ms,
            requires_manual_review=True,
            failure_kind=kind,
            failure_reason=reason,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
