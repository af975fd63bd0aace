"""Handlers that apply trade-in webhooks to local state."""

from functools import partial

from tradein.common.logging import logger
from tradein.services.credit.models import CreditNote
from tradein.services.tradein.models import TradeIn
from tradein.services.tradein.schemas import Actor, ManualEvaluation
from tradein.services.tradein.service import TradeInService
from tradein.services.webhooks.models import WebhookEvent
from tradein.services.webhooks.schemas import (
    SOURCE_SYSTEM,
    CreditNoteIssuedWebhook,
    EvaluationCompletedWebhook,
    OfferAcceptedWebhook,
)
from tradein.services.webhooks.service import WebhookService

EVALUATION_COMPLETED = "EVALUATION_COMPLETED"
OFFER_ACCEPTED = "OFFER_ACCEPTED"
CREDIT_NOTE_ISSUED = "CREDIT_NOTE_ISSUED"


class TradeInWebhookHandlers:
    """Entry points for the three trade-in webhook types."""

    def __init__(self, session_factory, webhooks: WebhookService, trade_ins: TradeInService) -> None:
        self.session_factory = session_factory
        self.webhooks = webhooks
        self.trade_ins = trade_ins

    def _trade_in(self, trade_in_id: int) -> TradeIn | None:
        with self.session_factory() as db:
            return db.get(TradeIn, trade_in_id)

    def apply_evaluation(self, webhook: EvaluationCompletedWebhook) -> bool:
        trade_in = self._trade_in(webhook.trade_in_case_id)
        if trade_in is None:
            logger.warning("evaluation webhook for unknown trade-in case_id=%s", webhook.trade_in_case_id)
            return False
        self.trade_ins.evaluate(
            trade_in.public_id,
            ManualEvaluation(
                grade=webhook.condition_grade,
                value_cents=webhook.offered_amount_cents,
                notes=webhook.evaluation_notes or None,
            ),
            Actor(user_id=webhook.evaluated_by or SOURCE_SYSTEM, is_admin=True),
        )
        return True

    def apply_offer_accepted(self, webhook: OfferAcceptedWebhook) -> bool:
        trade_in = self._trade_in(webhook.trade_in_case_id)
        if trade_in is None or trade_in.owner_id != webhook.user_id:
            logger.warning(
                "offer webhook for unknown trade-in case_id=%s user=%s", webhook.trade_in_case_id, webhook.user_id
            )
            return False
        if trade_in.offer_cents != webhook.accepted_amount_cents:
            logger.warning(
                "offer webhook amount mismatch case_id=%s offered_cents=%s accepted_cents=%s",
                webhook.trade_in_case_id,
                trade_in.offer_cents,
                webhook.accepted_amount_cents,
            )
            return False
        self.trade_ins.accept(trade_in.public_id, Actor(user_id=webhook.user_id))
        return True

    def confirm_credit_note(self, webhook: CreditNoteIssuedWebhook) -> bool:
        with self.session_factory() as db:
            note = db.get(CreditNote, webhook.credit_note_id)
        if note is None:
            logger.warning("credit note webhook for unknown credit_note_id=%s", webhook.credit_note_id)
            return False
        if webhook.credit_note_code and webhook.credit_note_code != note.code:
            logger.warning("credit note webhook code mismatch credit_note_id=%s", webhook.credit_note_id)
            return False
        logger.info(
            "credit note issuance confirmed code=%s owner=%s amount_cents=%s", note.code, note.owner_id, note.amount_cents
        )
        return True

    def evaluation_completed(self, webhook: EvaluationCompletedWebhook) -> bool:
        return self.webhooks.process_webhook(
            webhook.event_id,
            EVALUATION_COMPLETED,
            SOURCE_SYSTEM,
            webhook.model_dump(mode="json"),
            partial(self.apply_evaluation, webhook),
            trade_in_id=webhook.trade_in_case_id,
        )

    def offer_accepted(self, webhook: OfferAcceptedWebhook) -> bool:
        return self.webhooks.process_webhook(
            webhook.event_id,
            OFFER_ACCEPTED,
            SOURCE_SYSTEM,
            webhook.model_dump(mode="json"),
            partial(self.apply_offer_accepted, webhook),
            trade_in_id=webhook.trade_in_case_id,
        )

    def credit_note_issued(self, webhook: CreditNoteIssuedWebhook) -> bool:
        return self.webhooks.process_webhook(
            webhook.event_id,
            CREDIT_NOTE_ISSUED,
            SOURCE_SYSTEM,
            webhook.model_dump(mode="json"),
            partial(self.confirm_credit_note, webhook),
            credit_note_id=webhook.credit_note_id,
        )

    def handler_for(self, event: WebhookEvent):
        """Rebuild the handler for a stored event (used by the retry sweep)."""

        if event.event_type == EVALUATION_COMPLETED:
            return partial(self.apply_evaluation, EvaluationCompletedWebhook.model_validate(event.payload))
        if event.event_type == OFFER_ACCEPTED:
            return partial(self.apply_offer_accepted, OfferAcceptedWebhook.model_validate(event.payload))
        if event.event_type == CREDIT_NOTE_ISSUED:
            return partial(self.confirm_credit_note, CreditNoteIssuedWebhook.model_validate(event.payload))
        return None

    def retry_due(self) -> int:
        return self.webhooks.retry_due(self.handler_for)
