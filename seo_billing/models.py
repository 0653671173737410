import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, JSON

from seo_billing.database import Base
from seo_billing.errors import AlreadyTerminalError


def utc_now():
    return datetime.now(timezone.utc)


class PaymentMethod(str, enum.Enum):
    MOMO = "momo"
    VNPAY = "vnpay"
    PAYPAL = "paypal"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self is not OrderStatus.PENDING


def transition(current, target):
    """Return the status an order moves to, or raise if it may not move.

    The only legal moves are pending -> completed and pending -> failed.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    if current.is_terminal:
        raise AlreadyTerminalError(current.value)
    if not target.is_terminal:
        raise ValueError(f"Cannot move an order from {current.value} to {target.value}")
    return target


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(String, primary_key=True)           # ORDER_<ms>_<random>
    user_id = Column(String, index=True, nullable=False)
    user_email = Column(String, nullable=True)
    package_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)        # VND, minor units
    payment_method = Column(String, nullable=False) # momo | vnpay | paypal
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value)
    transaction_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False)
    package_id = Column(String, nullable=False)
    status = Column(String, default="active")
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)


class WebhookEvent(Base):
    """One row per verified gateway delivery, replays included."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False)
    order_id = Column(String, index=True, nullable=True)
    outcome = Column(String, nullable=False)        # completed | failed | replay
    transaction_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)
    raw_data = Column(JSON, nullable=False)         # signatures redacted
    received_at = Column(DateTime(timezone=True), default=utc_now)
