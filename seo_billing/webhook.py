"""
Payment webhook pipeline.

parse -> verify -> normalize -> mark order terminal -> activate subscription
-> notify. Nothing is written before verification and normalization succeed.
Every verified delivery is also logged to `webhook_events`, best-effort.
After the order has moved to a terminal state, later failures are logged
but never undo it: money collected by the gateway stays recorded.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from seo_billing.errors import OrderNotFoundError, SignatureError
from seo_billing.events import REPLAY, UNKNOWN_ORDER
from seo_billing.logging_config import sanitize_log_data
from seo_billing.payloads import normalize, parse_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    provider: str
    order_id: str
    status: str
    transaction_id: Optional[str]
    already_processed: bool = False
    subscription_activated: bool = False


class WebhookProcessor:
    def __init__(self, orders, subscriptions, verifier, notifier, events=None):
        self.orders = orders
        self.subscriptions = subscriptions
        self.verifier = verifier
        self.notifier = notifier
        self.events = events

    def process(self, provider, data) -> WebhookResult:
        payload = parse_payload(provider, data)
        kind = payload.kind.value
        logger.info("Webhook received from %s: %s", kind, sanitize_log_data(payload.data))

        if not self.verifier.verify(payload):
            logger.warning("Invalid %s webhook signature", kind)
            raise SignatureError(f"Invalid {kind} signature")

        outcome = normalize(payload)
        logger.info("Payment processed: order=%s success=%s transaction=%s",
                    outcome.order_id, outcome.success, outcome.transaction_id)

        try:
            change = self.orders.mark_terminal(outcome.order_id, outcome.success, outcome.transaction_id)
        except OrderNotFoundError:
            self._record(kind, outcome.order_id, UNKNOWN_ORDER, outcome.transaction_id, payload.data)
            raise

        if not change.applied:
            self._record(kind, change.order_id, REPLAY, outcome.transaction_id, payload.data)
            return WebhookResult(
                provider=kind,
                order_id=change.order_id,
                status=change.status.value,
                transaction_id=change.transaction_id,
                already_processed=True,
            )

        self._record(kind, change.order_id, change.status.value, change.transaction_id, payload.data)

        activated = False
        if change.first_completion:
            activated = self._activate(change)
            self.notifier.notify(change.user_id, change.order_id, change.transaction_id)

        return WebhookResult(
            provider=kind,
            order_id=change.order_id,
            status=change.status.value,
            transaction_id=change.transaction_id,
            subscription_activated=activated,
        )

    def _record(self, provider, order_id, outcome, transaction_id, data):
        if self.events is None:
            return
        try:
            self.events.record(provider, order_id, outcome, transaction_id, data)
        except Exception:
            logger.exception("Could not record %s webhook for order %s", provider, order_id)

    def _activate(self, change):
        try:
            self.subscriptions.activate(change.user_id, change.package_id)
        except Exception:
            # The order stays completed; reconcile_subscriptions picks this up.
            logger.critical(
                "Order %s completed but subscription activation failed for user %s (package %s)",
                change.order_id, change.user_id, change.package_id, exc_info=True,
            )
            return False
        return True
