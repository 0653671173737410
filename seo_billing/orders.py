import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update

from seo_billing.errors import AlreadyTerminalError, OrderNotFoundError
from seo_billing.models import OrderStatus, PaymentOrder, transition, utc_now

logger = logging.getLogger(__name__)


def new_order_id() -> str:
    return f"ORDER_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Transition:
    """Outcome of one attempt to move an order out of `pending`."""
    order_id: str
    user_id: str
    package_id: str
    previous_status: OrderStatus
    status: OrderStatus
    transaction_id: Optional[str]

    @property
    def applied(self):
        return self.previous_status is OrderStatus.PENDING

    @property
    def first_completion(self):
        return self.applied and self.status is OrderStatus.COMPLETED


class OrderStore:
    """PaymentOrder persistence backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory, clock=utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def create(self, user_id, package_id, amount, payment_method, user_email=None) -> PaymentOrder:
        order = PaymentOrder(
            id=new_order_id(),
            user_id=user_id,
            user_email=user_email,
            package_id=package_id,
            amount=amount,
            payment_method=payment_method,
            status=OrderStatus.PENDING.value,
            created_at=self.clock(),
        )
        with self.session_factory() as db:
            db.add(order)
            db.commit()
            db.refresh(order)
        logger.info("Order created %s (user=%s, method=%s, amount=%s)", order.id, user_id, payment_method, amount)
        return order

    def get(self, order_id) -> Optional[PaymentOrder]:
        with self.session_factory() as db:
            return db.get(PaymentOrder, order_id)

    def mark_terminal(self, order_id, success, transaction_id) -> Transition:
        """Move a pending order to completed/failed exactly once.

        The write is a compare-and-set on `status = 'pending'`; a replayed or
        concurrent delivery that loses gets the stored terminal state back.
        """
        target = OrderStatus.COMPLETED if success else OrderStatus.FAILED

        with self.session_factory() as db:
            order = db.get(PaymentOrder, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)

            try:
                transition(order.status, target)
            except AlreadyTerminalError:
                logger.info("Order %s already %s, ignoring replay", order_id, order.status)
                return self._unchanged(order)

            values = {"status": target.value, "transaction_id": transaction_id}
            if target is OrderStatus.COMPLETED:
                values["completed_at"] = self.clock()

            result = db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == order_id, PaymentOrder.status == OrderStatus.PENDING.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()

            if result.rowcount == 0:
                # Another delivery won between our read and our write.
                order = db.get(PaymentOrder, order_id)
                logger.info("Order %s transitioned concurrently to %s", order_id, order.status)
                return self._unchanged(order)

            logger.info("Order %s %s -> %s (transaction=%s)", order_id, OrderStatus.PENDING.value, target.value, transaction_id)
            return Transition(
                order_id=order.id,
                user_id=order.user_id,
                package_id=order.package_id,
                previous_status=OrderStatus.PENDING,
                status=target,
                transaction_id=transaction_id,
            )

    @staticmethod
    def _unchanged(order):
        status = OrderStatus(order.status)
        return Transition(
            order_id=order.id,
            user_id=order.user_id,
            package_id=order.package_id,
            previous_status=status,
            status=status,
            transaction_id=order.transaction_id,
        )

    def list_for_user(self, user_id):
        with self.session_factory() as db:
            return (
                db.query(PaymentOrder)
                .filter(PaymentOrder.user_id == user_id)
                .order_by(PaymentOrder.created_at.desc(), PaymentOrder.id.desc())
                .all()
            )

    def completed_orders(self):
        with self.session_factory() as db:
            return (
                db.query(PaymentOrder)
                .filter(PaymentOrder.status == OrderStatus.COMPLETED.value)
                .order_by(PaymentOrder.completed_at)
                .all()
            )
