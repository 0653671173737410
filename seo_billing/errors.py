"""
Billing error taxonomy.

Each error maps to one HTTP outcome in the route layer:
signature failures are 401, malformed input is 400, and anything that
happens after verification (unknown order, upstream outage) is 500.
"""


class BillingError(Exception):
    """Base class for all billing failures."""


class SignatureError(BillingError):
    """The payload could not be authenticated as coming from the gateway."""


class MalformedPayloadError(BillingError):
    """Unknown provider, or a payload missing the fields we need."""


class OrderNotFoundError(BillingError):
    def __init__(self, order_id):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class GatewayError(BillingError):
    """A payment gateway could not be reached or rejected our request."""


class AlreadyTerminalError(BillingError):
    def __init__(self, status):
        super().__init__(f"Order already {status}")
        self.status = status
