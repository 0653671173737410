import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from seo_billing import config
from seo_billing.models import Subscription, utc_now

logger = logging.getLogger(__name__)


class SubscriptionStore:
    """One subscription row per user; each activation restarts the window."""

    def __init__(self, session_factory, clock=utc_now, validity_days=None):
        self.session_factory = session_factory
        self.clock = clock
        self.validity_days = validity_days or config.SUBSCRIPTION_DAYS

    def get(self, user_id) -> Optional[Subscription]:
        with self.session_factory() as db:
            return db.query(Subscription).filter_by(user_id=user_id).first()

    def activate(self, user_id, package_id, start=None) -> Subscription:
        """Upsert the user's row with a fresh window from `start` (default: now)."""
        start = start or self.clock()
        end = start + timedelta(days=self.validity_days)

        with self.session_factory() as db:
            try:
                sub = self._upsert(db, user_id, package_id, start, end)
            except IntegrityError:
                # A concurrent activation inserted the row first; overwrite it.
                db.rollback()
                sub = self._upsert(db, user_id, package_id, start, end)
            db.refresh(sub)

        logger.info("Subscription activated for user %s: package=%s until %s", user_id, package_id, end.isoformat())
        return sub

    @staticmethod
    def _upsert(db, user_id, package_id, start, end):
        sub = db.query(Subscription).filter_by(user_id=user_id).first()
        if sub is None:
            sub = Subscription(user_id=user_id)
            db.add(sub)
        sub.package_id = package_id
        sub.status = "active"
        sub.start_date = start
        sub.end_date = end
        db.commit()
        return sub
