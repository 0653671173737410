import pytest

from seo_billing.signatures import momo_signature, vnpay_signature

MOMO_SECRET = "momo-test-secret"
VNPAY_SECRET = "vnpay-test-secret"
JWT_SECRET = "jwt-test-secret"


@pytest.fixture(autouse=True)
def billing_secrets(monkeypatch):
    monkeypatch.setattr("seo_billing.config.MOMO_SECRET_KEY", MOMO_SECRET)
    monkeypatch.setattr("seo_billing.config.VNPAY_HASH_SECRET", VNPAY_SECRET)
    monkeypatch.setattr("seo_billing.config.JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr("seo_billing.config.NOTIFY_URL", None)


@pytest.fixture
def momo_payload():
    """Build a MoMo IPN body signed with the test secret."""
    def build(order_id, result_code=0, trans_id="T1", **overrides):
        data = {
            "partnerCode": "MOMOSEO",
            "accessKey": "momo-access",
            "requestId": f"{order_id}_1700000000000",
            "amount": 199000,
            "orderId": order_id,
            "orderInfo": "SEO Pro",
            "orderType": "momo_wallet",
            "transId": trans_id,
            "resultCode": result_code,
            "message": "Successful.",
            "payType": "qr",
            "responseTime": 1700000000000,
            "extraData": "",
        }
        data.update(overrides)
        data["signature"] = momo_signature(data, MOMO_SECRET)
        return data
    return build


@pytest.fixture
def vnpay_payload():
    """Build a VNPay IPN parameter set signed with the test secret."""
    def build(order_id, response_code="00", transaction_no="14123456"):
        params = {
            "vnp_Amount": "19900000",
            "vnp_BankCode": "NCB",
            "vnp_OrderInfo": "SEO Pro",
            "vnp_PayDate": "20261019120000",
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": "SEOTEST1",
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionStatus": response_code,
            "vnp_TxnRef": order_id,
        }
        params["vnp_SecureHash"] = vnpay_signature(params, VNPAY_SECRET)
        return params
    return build
