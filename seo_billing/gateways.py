"""
Checkout redirects for the supported gateways.

Each builder receives an order that is already stored as `pending` and
returns the URL the payer's browser should be sent to. The order id always
travels in a field the gateway echoes back to the webhook: MoMo `orderId`,
VNPay `vnp_TxnRef`, PayPal `custom`.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import httpx

from seo_billing import config
from seo_billing.errors import GatewayError
from seo_billing.models import PaymentMethod
from seo_billing.signatures import momo_signature, vnpay_signature

logger = logging.getLogger(__name__)

MOMO_CREATE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)

# VNPay timestamps are Vietnam local time
VN_TZ = timezone(timedelta(hours=7))


def webhook_url(provider):
    return f"{config.PUBLIC_BASE_URL.rstrip('/')}/payment-webhook?provider={provider}"


def create_momo_payment(order_id, amount, order_info, return_url):
    request = {
        "partnerCode": config.MOMO_PARTNER_CODE,
        "accessKey": config.MOMO_ACCESS_KEY,
        "requestId": f"{order_id}_{int(time.time() * 1000)}",
        "amount": str(amount),
        "orderId": order_id,
        "orderInfo": order_info,
        "redirectUrl": return_url,
        "ipnUrl": webhook_url(PaymentMethod.MOMO.value),
        "extraData": "",
        "requestType": "payWithATM",
        "lang": "vi",
    }
    request["signature"] = momo_signature(request, config.MOMO_SECRET_KEY, MOMO_CREATE_FIELDS)

    try:
        response = httpx.post(config.MOMO_ENDPOINT, json=request, timeout=config.HTTP_TIMEOUT)
        result = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise GatewayError(f"MoMo unreachable: {e}") from e

    if result.get("resultCode") != 0:
        raise GatewayError(f"MoMo Error: {result.get('message')}")
    return result["payUrl"]


def create_vnpay_payment(order_id, amount, order_info, return_url, ip_addr="127.0.0.1", now=None):
    now = (now or datetime.now(timezone.utc)).astimezone(VN_TZ)
    params = {
        "vnp_Version": "2.1.0",
        "vnp_Command": "pay",
        "vnp_TmnCode": config.VNPAY_TMN_CODE,
        "vnp_Amount": str(amount * 100),
        "vnp_CreateDate": now.strftime("%Y%m%d%H%M%S"),
        "vnp_CurrCode": "VND",
        "vnp_IpAddr": ip_addr,
        "vnp_Locale": "vn",
        "vnp_OrderInfo": order_info,
        "vnp_OrderType": "other",
        "vnp_ReturnUrl": return_url,
        "vnp_TxnRef": order_id,
        "vnp_ExpireDate": (now + timedelta(minutes=15)).strftime("%Y%m%d%H%M%S"),
    }
    params["vnp_SecureHash"] = vnpay_signature(params, config.VNPAY_HASH_SECRET)
    query = "&".join(f"{key}={quote(str(value), safe='')}" for key, value in params.items())
    return f"{config.VNPAY_URL}?{query}"


def create_paypal_payment(paypal_client, order_id, amount, description, return_url, cancel_url):
    amount_usd = f"{amount / config.PAYPAL_VND_PER_USD:.2f}"
    return paypal_client.create_payment(order_id, amount_usd, description, return_url, cancel_url)


def create_payment_url(order, package_name, return_url, cancel_url, paypal_client=None, ip_addr="127.0.0.1"):
    method = PaymentMethod(order.payment_method)
    if method is PaymentMethod.MOMO:
        url = create_momo_payment(order.id, order.amount, package_name, return_url)
    elif method is PaymentMethod.VNPAY:
        url = create_vnpay_payment(order.id, order.amount, package_name, return_url, ip_addr=ip_addr)
    else:
        url = create_paypal_payment(paypal_client, order.id, order.amount, package_name, return_url, cancel_url)
    logger.info("Payment URL created for order %s via %s", order.id, method.value)
    return url
