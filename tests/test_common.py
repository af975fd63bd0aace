"""Shared infrastructure: config snapshot redaction and log context."""

import logging

from tradein.common.config import CommonSettings
from tradein.common.logging import ContextFilter, event_id_ctx, log_context, trade_in_id_ctx
from tradein.common.startup import redacted_config
from tradein.common.tracing import current_trace_id


def test_redacted_config_masks_secrets():
    config = CommonSettings(postgres_dsn="postgresql://u:p@db/tradein", api_key="k", remote_assessment_api_key="")

    snapshot = redacted_config(
        config, ["postgres_dsn", "api_key", "remote_assessment_api_key", "assessment_provider", "min_condition_score"]
    )

    assert snapshot == {
        "postgres_dsn": "<redacted>",
        "api_key": "<redacted>",
        "remote_assessment_api_key": "<unset>",
        "assessment_provider": "stub",
        "min_condition_score": 0.25,
    }


def test_log_context_tags_records_and_resets():
    record = logging.LogRecord("tradein", logging.INFO, __file__, 1, "msg", None, None)

    with log_context(trade_in_id="ti-1", event_id="evt-1"):
        ContextFilter().filter(record)
        assert trade_in_id_ctx.get() == "ti-1"

    assert record.trade_in_id == "ti-1"
    assert record.event_id == "evt-1"
    assert trade_in_id_ctx.get() == ""
    assert event_id_ctx.get() == ""


def test_no_trace_id_outside_spans():
    assert current_trace_id() == ""
