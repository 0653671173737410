import logging

import httpx

from seo_billing import config
from seo_billing.errors import GatewayError

logger = logging.getLogger(__name__)


class PayPalClient:
    """Minimal PayPal REST (v1 payments) client.

    Every call gets a fresh client-credentials token; webhooks are rare enough
    that caching it is not worth the invalidation logic.
    """

    def __init__(self, client_id=None, client_secret=None, base_url=None, timeout=None, transport=None):
        self.client_id = client_id if client_id is not None else config.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.PAYPAL_CLIENT_SECRET
        self.base_url = (base_url or config.PAYPAL_BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.transport = transport

    def get_access_token(self, client: httpx.Client) -> str:
        response = client.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            raise GatewayError(f"PayPal token request failed with HTTP {response.status_code}")
        token = response.json().get("access_token")
        if not token:
            raise GatewayError("PayPal token response has no access_token")
        return token

    def get_payment(self, payment_id: str):
        """Fetch a payment resource. Returns None when PayPal does not vouch for it."""
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                token = self.get_access_token(client)
                response = client.get(
                    f"{self.base_url}/v1/payments/payment/{payment_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal unreachable: {e}") from e

        if response.status_code != 200:
            logger.warning("PayPal rejected payment lookup %s: HTTP %s", payment_id, response.status_code)
            return None
        return response.json()

    def create_payment(self, order_id, amount_usd, description, return_url, cancel_url) -> str:
        """Create a 'sale' payment and return its approval URL."""
        body = {
            "intent": "sale",
            "payer": {"payment_method": "paypal"},
            "transactions": [{
                "amount": {"total": amount_usd, "currency": "USD"},
                "description": description,
                "custom": order_id,
            }],
            "redirect_urls": {"return_url": return_url, "cancel_url": cancel_url},
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                token = self.get_access_token(client)
                response = client.post(
                    f"{self.base_url}/v1/payments/payment",
                    headers={"Authorization": f"Bearer {token}"},
                    json=body,
                )
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise GatewayError(f"PayPal returned a non-JSON response (HTTP {response.status_code})")
        if data.get("state") != "created":
            raise GatewayError(f"PayPal Error: {data.get('message', response.status_code)}")
        for link in data.get("links", []):
            if link.get("rel") == "approval_url":
                return link["href"]
        raise GatewayError("PayPal response has no approval_url")
