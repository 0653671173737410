"""
Out-of-band repair for completed orders whose subscription was never written.

The webhook never rolls back a completed order when the subscription upsert
fails; it logs the inconsistency instead. Running this module re-activates
the package of each user's latest completed order when that user has no
subscription started at or after the order completed. The repaired window
starts at the order's `completed_at`, as it would have on the webhook path,
so a late repair does not hand out extra days.

    python -m seo_billing.reconcile
"""
import logging
from datetime import timezone

from seo_billing.orders import OrderStore
from seo_billing.subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)


def _as_utc(dt):
    # SQLite hands back naive datetimes; everything we store is UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def reconcile_subscriptions(session_factory, subscriptions=None):
    """Return the ids of the orders whose subscription was re-activated."""
    orders = OrderStore(session_factory)
    subscriptions = subscriptions or SubscriptionStore(session_factory)

    latest = {}
    for order in orders.completed_orders():
        latest[order.user_id] = order

    repaired = []
    for user_id, order in latest.items():
        sub = subscriptions.get(user_id)
        if sub is not None and _as_utc(sub.start_date) >= _as_utc(order.completed_at):
            continue
        try:
            subscriptions.activate(user_id, order.package_id, start=_as_utc(order.completed_at))
        except Exception:
            logger.exception("Could not repair subscription for user %s (order %s)", user_id, order.id)
            continue
        logger.warning("Repaired missing subscription for user %s from order %s", user_id, order.id)
        repaired.append(order.id)
    return repaired


if __name__ == "__main__":
    from seo_billing import config
    from seo_billing.database import Base, SessionLocal, engine
    from seo_billing.logging_config import setup_logging

    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    Base.metadata.create_all(bind=engine)
    fixed = reconcile_subscriptions(SessionLocal)
    logger.info("Reconciliation finished, %d subscription(s) repaired", len(fixed))
