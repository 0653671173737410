"""
Per-provider webhook authentication.

MoMo and VNPay sign their callbacks with a shared secret (HMAC-SHA256 and
HMAC-SHA512). PayPal v1 payments carry no signature we can check locally, so
the payment is re-read from the PayPal API and that authenticated response
becomes the source of truth.
"""
import hashlib
import hmac
import logging

from seo_billing import config
from seo_billing.payloads import MomoPayload, VNPayPayload, PayPalPayload

logger = logging.getLogger(__name__)

MOMO_IPN_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo",
    "orderType", "partnerCode", "payType", "requestId", "responseTime",
    "resultCode", "transId",
)

VNPAY_UNSIGNED_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")


def hmac_hex(secret: str, message: str, digestmod) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), digestmod).hexdigest()


def momo_raw_signature(data: dict, fields=MOMO_IPN_FIELDS) -> str:
    """Canonical `key=value&...` string; raises KeyError on a missing field."""
    parts = []
    for key in fields:
        if data.get(key) is None:
            raise KeyError(key)
        parts.append(f"{key}={data[key]}")
    return "&".join(parts)


def momo_signature(data: dict, secret: str, fields=MOMO_IPN_FIELDS) -> str:
    return hmac_hex(secret, momo_raw_signature(data, fields), hashlib.sha256)


def vnpay_sign_data(params: dict) -> str:
    return "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in VNPAY_UNSIGNED_FIELDS
    )


def vnpay_signature(params: dict, secret: str) -> str:
    return hmac_hex(secret, vnpay_sign_data(params), hashlib.sha512)


class SignatureVerifier:
    def __init__(self, paypal_client=None, momo_secret=None, vnpay_secret=None):
        self.paypal_client = paypal_client
        self.momo_secret = momo_secret if momo_secret is not None else config.MOMO_SECRET_KEY
        self.vnpay_secret = vnpay_secret if vnpay_secret is not None else config.VNPAY_HASH_SECRET

    def verify(self, payload) -> bool:
        if isinstance(payload, MomoPayload):
            return self.verify_momo(payload.data)
        if isinstance(payload, VNPayPayload):
            return self.verify_vnpay(payload.data)
        if isinstance(payload, PayPalPayload):
            return self.verify_paypal(payload)
        return False

    def verify_momo(self, data: dict) -> bool:
        supplied = data.get("signature")
        if not supplied:
            return False
        try:
            expected = momo_signature(data, self.momo_secret)
        except KeyError as e:
            logger.warning("MoMo payload missing signed field %s", e)
            return False
        return hmac.compare_digest(expected, str(supplied))

    def verify_vnpay(self, data: dict) -> bool:
        supplied = data.get("vnp_SecureHash")
        if not supplied:
            return False
        expected = vnpay_signature(data, self.vnpay_secret)
        return hmac.compare_digest(expected.lower(), str(supplied).lower())

    def verify_paypal(self, payload: PayPalPayload) -> bool:
        """Re-query PayPal; GatewayError on transport failure propagates."""
        if self.paypal_client is None or not payload.payment_id:
            return False
        resource = self.paypal_client.get_payment(payload.payment_id)
        if not resource:
            return False
        payload.resource = resource
        return True
