import logging

from seo_billing.logging_config import sanitize_log_data
from seo_billing.models import WebhookEvent, utc_now

logger = logging.getLogger(__name__)

REPLAY = "replay"
UNKNOWN_ORDER = "unknown_order"


def _amount(data):
    # MoMo sends VND, VNPay sends VND * 100, PayPal carries none in the callback.
    for key, divisor in (("amount", 1), ("vnp_Amount", 100)):
        value = data.get(key)
        if value in (None, ""):
            continue
        try:
            return int(value) // divisor
        except (TypeError, ValueError):
            return None
    return None


class WebhookEventStore:
    """Append-only log of verified webhook deliveries for operators."""

    def __init__(self, session_factory, clock=utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def record(self, provider, order_id, outcome, transaction_id, data) -> WebhookEvent:
        event = WebhookEvent(
            provider=provider,
            order_id=order_id,
            outcome=outcome,
            transaction_id=transaction_id,
            amount=_amount(data),
            raw_data=sanitize_log_data(dict(data)),
            received_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(event)
            db.commit()
            db.refresh(event)
        logger.debug("Recorded %s webhook for order %s (%s)", provider, order_id, outcome)
        return event

    def for_order(self, order_id):
        with self.session_factory() as db:
            return (
                db.query(WebhookEvent)
                .filter(WebhookEvent.order_id == order_id)
                .order_by(WebhookEvent.id)
                .all()
            )
