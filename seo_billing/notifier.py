import logging

import httpx

from seo_billing import config

logger = logging.getLogger(__name__)


class Notifier:
    """Sends the payment confirmation through the email/messaging service.

    Never raises: a payment is confirmed whether or not the email goes out.
    """

    def __init__(self, url=None, timeout=None):
        self.url = url if url is not None else config.NOTIFY_URL
        self.timeout = timeout or config.HTTP_TIMEOUT

    def notify(self, user_id, order_id, transaction_id):
        if not self.url:
            logger.info("No NOTIFY_URL configured, skipping confirmation for order %s", order_id)
            return
        try:
            response = httpx.post(
                self.url,
                json={
                    "template": "payment_success",
                    "user_id": user_id,
                    "order_id": order_id,
                    "transaction_id": transaction_id,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except Exception:
            logger.exception("Confirmation for order %s could not be sent", order_id)
        else:
            logger.info("Confirmation sent for order %s", order_id)
