# tollplaza/services/pricing_service.py
"""
Lookups against the pricing and account/bundle collaborators.
"""

from datetime import date, datetime
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from tollplaza.models.account import BundleSubscription
from tollplaza.models.pricing import BodyTypePrice
from tollplaza.utils.logger import get_logger

logger = get_logger(__name__)


def get_effective_price(db: Session, body_type_id: int, station_id: int,
                        on_date: Optional[date] = None) -> Optional[BodyTypePrice]:
    """The active price row effective on on_date (default today); latest effective_from wins."""
    on_date = on_date or date.today()
    return (
        db.query(BodyTypePrice)
        .filter(
            BodyTypePrice.body_type_id == body_type_id,
            BodyTypePrice.station_id == station_id,
            BodyTypePrice.is_active.is_(True),
            BodyTypePrice.effective_from <= on_date,
            or_(BodyTypePrice.effective_to.is_(None), BodyTypePrice.effective_to >= on_date),
        )
        .order_by(BodyTypePrice.effective_from.desc(), BodyTypePrice.id.desc())
        .first()
    )


def get_usable_bundle(db: Session, account_id: int,
                      at: Optional[datetime] = None) -> Optional[BundleSubscription]:
    """
    An active, non-expired subscription of the account that still has passages left
    (or is unlimited). Returns None when the account cannot cover a passage.
    """
    at = at or datetime.utcnow()
    subscriptions = (
        db.query(BundleSubscription)
        .filter(
            BundleSubscription.account_id == account_id,
            BundleSubscription.status == "active",
            BundleSubscription.start_datetime <= at,
            BundleSubscription.end_datetime >= at,
        )
        .order_by(BundleSubscription.end_datetime.asc(), BundleSubscription.id.asc())
        .all()
    )
    for subscription in subscriptions:
        if subscription.has_remaining_passages():
            return subscription
    if subscriptions:
        logger.info(f"[BUNDLE] Account {account_id} has no passages left on its active bundles")
    return None
