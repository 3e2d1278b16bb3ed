# storefront/services/ledger.py
"""
Coupon redemption ledger.

``usage_count`` is shared by every customer, so it is only ever changed by a
single conditional UPDATE; the affected-row count tells us whether the coupon
still had room. ``coupon_usage.order_id`` is unique, which makes a retried
redemption of the same order a no-op.
"""
from __future__ import annotations

import enum
import logging
import uuid

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..model import Coupon, CouponUsage, CustomerDiscount, Order, OrderStatus
from ..utils.money import D, round_money

logger = logging.getLogger(__name__)


class RedemptionStatus(str, enum.Enum):
    REDEEMED = "redeemed"
    DUPLICATE = "duplicate"      # this order already redeemed this coupon
    EXHAUSTED = "exhausted"      # limit reached or coupon disabled meanwhile
    ORDER_TAKEN = "order_taken"  # this order already redeemed a different coupon

    @property
    def applied(self) -> bool:
        return self in (RedemptionStatus.REDEEMED, RedemptionStatus.DUPLICATE)


def normalize_email(email) -> str:
    return (email or "").strip().lower() if isinstance(email, str) else ""


def _placed_orders(email: str) -> int:
    return (
        db.session.query(func.count(Order.id))
        .filter(func.lower(Order.email) == email, Order.status != OrderStatus.CANCELLED.value)
        .scalar()
    ) or 0


def is_first_time_customer(email: str) -> bool:
    """
    True when the e-mail has no placed (non-cancelled) order and no completed
    first purchase on record.
    """
    email = normalize_email(email)
    if _placed_orders(email):
        return False
    record = CustomerDiscount.query.filter_by(customer_email=email).first()
    return not (record and record.first_purchase_completed)


def mark_first_purchase(email: str, *, discount_applied=False) -> CustomerDiscount:
    email = normalize_email(email)
    record = CustomerDiscount.query.filter_by(customer_email=email).first()
    if record is None:
        record = CustomerDiscount(customer_email=email, first_purchase_completed=True)
        db.session.add(record)
    record.first_purchase_completed = True
    if discount_applied:
        record.first_purchase_discount_applied = True
    db.session.flush()
    return record


def reopen_first_purchase(email: str) -> bool:
    """
    Clear the first-purchase record when the customer has no placed
    (non-cancelled) order left. Returns True when the record was cleared.
    """
    email = normalize_email(email)
    record = CustomerDiscount.query.filter_by(customer_email=email).first()
    if _placed_orders(email) or record is None or not record.first_purchase_completed:
        return False
    record.first_purchase_completed = False
    record.first_purchase_discount_applied = False
    db.session.flush()
    logger.info("first purchase reopened for %s", email)
    return True


def as_coupon_id(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValueError("coupon_id must be a UUID")


def _usage_for_order(order_id: int) -> CouponUsage | None:
    return CouponUsage.query.filter_by(order_id=order_id).first()


def _existing_status(usage: CouponUsage, coupon_id: uuid.UUID) -> RedemptionStatus:
    if usage.coupon_id == coupon_id:
        logger.info("order %s already redeemed coupon %s, skipping", usage.order_id, coupon_id)
        return RedemptionStatus.DUPLICATE
    logger.warning("order %s already redeemed coupon %s, refusing %s", usage.order_id, usage.coupon_id, coupon_id)
    return RedemptionStatus.ORDER_TAKEN


def redeem(coupon_id, customer_email: str, order_id: int, discount_amount) -> RedemptionStatus:
    """
    Record a redemption inside the caller's transaction (nothing is committed).
    SQLAlchemy errors propagate to the caller.
    """
    coupon_id = as_coupon_id(coupon_id)
    email = normalize_email(customer_email)

    existing = _usage_for_order(order_id)
    if existing is not None:
        return _existing_status(existing, coupon_id)

    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.is_active.is_(True),
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )

    try:
        with db.session.begin_nested():
            result = db.session.execute(stmt)
            if result.rowcount != 1:
                logger.warning("coupon %s exhausted or disabled while redeeming order %s", coupon_id, order_id)
                return RedemptionStatus.EXHAUSTED
            db.session.add(CouponUsage(
                coupon_id=coupon_id,
                customer_email=email,
                order_id=order_id,
                discount_amount=round_money(D(discount_amount)),
            ))
            db.session.flush()
    except IntegrityError:
        # the savepoint undid our increment; only a row for this order makes it a retry
        existing = _usage_for_order(order_id)
        if existing is None:
            raise
        logger.info("order %s redeemed concurrently", order_id)
        return _existing_status(existing, coupon_id)

    # reload so callers holding the coupon see the new count
    db.session.get(Coupon, coupon_id, populate_existing=True)
    mark_first_purchase(email, discount_applied=True)
    logger.info("coupon %s redeemed for order %s (%s)", coupon_id, order_id, email)
    return RedemptionStatus.REDEEMED


def record_redemption(coupon_id, customer_email: str, order_id: int, discount_amount) -> bool:
    """
    Standalone redemption with its own commit. False means the coupon was NOT
    redeemed: limit reached, the order already redeemed another coupon, or a
    store failure (the caller may retry).
    """
    try:
        status = redeem(coupon_id, customer_email, order_id, discount_amount)
        if not status.applied:
            db.session.rollback()
            return False
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("failed to record redemption of coupon %s for order %s", coupon_id, order_id)
        return False
