import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import seo_billing.auth
import seo_billing.routes
from seo_billing.auth import CurrentUser
from seo_billing.database import Base
from seo_billing.main import app as fastapi_app
from seo_billing.models import PaymentOrder, Subscription, WebhookEvent
from seo_billing.reconcile import reconcile_subscriptions
from seo_billing.signatures import momo_signature

from conftest import MOMO_SECRET

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_integration.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    # Setup: Create the tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def client(monkeypatch):
    # Use the test database everywhere in the routes
    monkeypatch.setattr(seo_billing.routes, "SessionLocal", TestingSessionLocal)

    # Bypass auth verification for tests
    fastapi_app.dependency_overrides[seo_billing.auth.verify_token] = lambda: CurrentUser(id="user-42")

    with TestClient(fastapi_app) as c:
        yield c

    # Cleanup dependencies
    fastapi_app.dependency_overrides.clear()


def momo_ipn(order_id, amount, result_code=0, trans_id="T1"):
    """What MoMo posts back to the IPN url after the payer finishes."""
    data = {
        "partnerCode": "MOMOSEO",
        "accessKey": "momo-access",
        "requestId": f"{order_id}_1",
        "amount": amount,
        "orderId": order_id,
        "orderInfo": "SEO Pro",
        "orderType": "momo_wallet",
        "transId": trans_id,
        "resultCode": result_code,
        "message": "Successful.",
        "payType": "qr",
        "responseTime": 1760000000000,
        "extraData": "",
    }
    data["signature"] = momo_signature(data, MOMO_SECRET)
    return data


def test_full_momo_lifecycle_integration(client, mocker):
    """
    Test the full lifecycle:
    1. Checkout (API -> DB + MoMo mocked)
    2. IPN success (MoMo -> API -> DB, subscription activated)
    3. IPN replay (no second activation)
    """

    # --- 1. CHECKOUT ---
    momo_response = mocker.Mock()
    momo_response.json.return_value = {"resultCode": 0, "payUrl": "https://test-payment.momo.vn/pay/xyz"}
    momo_post = mocker.patch("seo_billing.gateways.httpx.post", return_value=momo_response)

    response = client.post("/payments", json={
        "payment_method": "momo",
        "package_id": "pro",
        "amount": 199000,
        "package_name": "SEO Pro",
        "return_url": "https://app.example/payment-success",
    })

    assert response.status_code == 200
    order_id = response.json()["order_id"]
    assert response.json()["payment_url"] == "https://test-payment.momo.vn/pay/xyz"

    sent = momo_post.call_args.kwargs["json"]
    assert sent["orderId"] == order_id
    assert sent["amount"] == "199000"
    assert sent["ipnUrl"].endswith("/payment-webhook?provider=momo")
    assert len(sent["signature"]) == 64

    db = TestingSessionLocal()
    assert db.get(PaymentOrder, order_id).status == "pending"
    db.close()

    # --- 2. IPN SUCCESS ---
    ipn = momo_ipn(order_id, 199000, trans_id="T1")
    webhook_response = client.post("/payment-webhook?provider=momo", json=ipn)

    assert webhook_response.status_code == 200
    assert webhook_response.json() == {"status": "ok"}

    db = TestingSessionLocal()
    order = db.get(PaymentOrder, order_id)
    assert order.status == "completed"
    assert order.transaction_id == "T1"
    sub = db.query(Subscription).filter_by(user_id="user-42").one()
    assert sub.status == "active"
    assert sub.package_id == "pro"
    assert (sub.end_date - sub.start_date).days == 30
    first_start = sub.start_date
    db.close()

    # --- 3. REPLAY ---
    replay_response = client.post("/payment-webhook?provider=momo", json=ipn)

    assert replay_response.status_code == 200
    db = TestingSessionLocal()
    assert db.get(PaymentOrder, order_id).transaction_id == "T1"
    subs = db.query(Subscription).filter_by(user_id="user-42").all()
    assert len(subs) == 1
    assert subs[0].start_date == first_start
    db.close()


def test_activation_failure_is_repaired_by_reconcile(client, mocker):
    momo_response = mocker.Mock()
    momo_response.json.return_value = {"resultCode": 0, "payUrl": "https://test-payment.momo.vn/pay/xyz"}
    mocker.patch("seo_billing.gateways.httpx.post", return_value=momo_response)
    order_id = client.post("/payments", json={
        "payment_method": "momo",
        "package_id": "pro",
        "amount": 199000,
        "package_name": "SEO Pro",
        "return_url": "https://app.example/",
    }).json()["order_id"]

    mocker.patch(
        "seo_billing.subscriptions.SubscriptionStore.activate",
        side_effect=RuntimeError("connection reset"),
    )
    response = client.post("/payment-webhook?provider=momo", json=momo_ipn(order_id, 199000))

    # Money was collected: the order stays completed and the gateway gets a 200
    assert response.status_code == 200
    db = TestingSessionLocal()
    assert db.get(PaymentOrder, order_id).status == "completed"
    assert db.query(Subscription).count() == 0
    db.close()

    mocker.stopall()
    assert reconcile_subscriptions(TestingSessionLocal) == [order_id]

    db = TestingSessionLocal()
    assert db.query(Subscription).filter_by(user_id="user-42").one().package_id == "pro"
    db.close()


def test_momo_checkout_rejected_by_gateway(client, mocker):
    momo_response = mocker.Mock()
    momo_response.json.return_value = {"resultCode": 11, "message": "Access denied"}
    mocker.patch("seo_billing.gateways.httpx.post", return_value=momo_response)

    response = client.post("/payments", json={
        "payment_method": "momo",
        "package_id": "pro",
        "amount": 199000,
        "package_name": "SEO Pro",
        "return_url": "https://app.example/",
    })

    assert response.status_code == 502
    assert response.json()["detail"] == "MoMo Error: Access denied"


def test_checkout_timeout_then_paid_ipn_completes_order(client, mocker):
    # MoMo may create the payment even though our request timed out
    mocker.patch("seo_billing.gateways.httpx.post", side_effect=httpx.ReadTimeout("timed out"))

    response = client.post("/payments", json={
        "payment_method": "momo",
        "package_id": "pro",
        "amount": 199000,
        "package_name": "SEO Pro",
        "return_url": "https://app.example/",
    })

    assert response.status_code == 502
    db = TestingSessionLocal()
    order = db.query(PaymentOrder).one()
    order_id = order.id
    assert order.status == "pending"
    db.close()

    # The payer completes the payment and MoMo calls back
    webhook_response = client.post("/payment-webhook?provider=momo", json=momo_ipn(order_id, 199000, trans_id="T1"))

    assert webhook_response.status_code == 200
    db = TestingSessionLocal()
    order = db.get(PaymentOrder, order_id)
    assert order.status == "completed"
    assert order.transaction_id == "T1"
    assert db.query(Subscription).filter_by(user_id="user-42").count() == 1
    db.close()


def test_webhook_deliveries_are_logged(client, mocker):
    momo_response = mocker.Mock()
    momo_response.json.return_value = {"resultCode": 0, "payUrl": "https://test-payment.momo.vn/pay/xyz"}
    mocker.patch("seo_billing.gateways.httpx.post", return_value=momo_response)
    order_id = client.post("/payments", json={
        "payment_method": "momo",
        "package_id": "pro",
        "amount": 199000,
        "package_name": "SEO Pro",
        "return_url": "https://app.example/",
    }).json()["order_id"]
    ipn = momo_ipn(order_id, 199000, trans_id="T1")

    client.post("/payment-webhook?provider=momo", json=ipn)
    client.post("/payment-webhook?provider=momo", json=ipn)

    db = TestingSessionLocal()
    events = db.query(WebhookEvent).filter_by(order_id=order_id).order_by(WebhookEvent.id).all()
    assert [e.outcome for e in events] == ["completed", "replay"]
    assert events[0].provider == "momo"
    assert events[0].transaction_id == "T1"
    assert events[0].amount == 199000
    assert events[0].raw_data["signature"] == "***REDACTED***"
    assert events[0].raw_data["orderId"] == order_id
    db.close()
