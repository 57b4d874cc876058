"""
Customer credit (udhaar).

`Customer.credit_balance` is a materialized view of the customer's unpaid
credit sales: the sum of `total_amount` over COMPLETED orders paid by
CREDIT whose payment is still PENDING. Every writer re-derives it from
those rows while holding the customer row lock instead of nudging the
stored number, so a missed update can never compound.
"""
import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import ValidationFailed
from rasoi.models.core import Customer, Order, OrderStatus, PaymentMethod, PaymentStatus
from rasoi.models.common import utcnow
from rasoi.services.customers import customer_row, get_customer
from rasoi.services.pricing import _money, as_float
from rasoi.util.audit import audit

logger = logging.getLogger(__name__)


def pending_credit_orders(db: Session, customer_id: str):
    """Unpaid credit sales, oldest debt first."""
    return (
        db.query(Order)
        .filter(
            Order.customer_id == customer_id,
            Order.status == OrderStatus.COMPLETED,
            Order.payment_method == PaymentMethod.CREDIT,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .order_by(Order.completed_at.asc(), Order.placed_at.asc(), Order.id.asc())
    )


def outstanding_credit(db: Session, customer_id: str) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(
            Order.customer_id == customer_id,
            Order.status == OrderStatus.COMPLETED,
            Order.payment_method == PaymentMethod.CREDIT,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .scalar()
    )
    return _money(total)


def rederive_balance(db: Session, ctx: ActorContext, customer_id: str) -> Customer:
    """Recompute the stored balance inside the caller's transaction."""
    db.flush()
    c = get_customer(db, ctx, customer_id, lock=True)
    c.credit_balance = outstanding_credit(db, c.id)
    return c


def sync_credit_quietly(db: Session, ctx: ActorContext, customer_id: str, expected_delta: Decimal = Decimal("0")) -> None:
    """
    Bring a customer's balance in line after a payment change.

    Runs in its own transaction after the payment has committed and never
    raises. `expected_delta` is what the payment transition should have
    moved the balance by; if re-deriving disagrees, the stored balance had
    drifted and we say so.
    """
    try:
        with transaction(db):
            c = get_customer(db, ctx, customer_id, lock=True)
            before = _money(c.credit_balance)
            after = outstanding_credit(db, c.id)
            if after != _money(before + expected_delta):
                logger.warning(
                    "credit drift on customer %s: stored %s, change %s, derived %s",
                    c.id, before, expected_delta, after,
                )
            c.credit_balance = after
    except Exception:
        logger.warning("credit balance sync failed for customer %s", customer_id, exc_info=True)


def reconcile_credit(db: Session, ctx: ActorContext, customer_id: str) -> dict:
    """Operator-triggered repair of a drifted balance."""
    with transaction(db):
        c = get_customer(db, ctx, customer_id, lock=True)
        before = _money(c.credit_balance)
        c.credit_balance = outstanding_credit(db, c.id)
        if c.credit_balance != before:
            audit(db, ctx, "Customer", c.id, "CREDIT_RECONCILE",
                  before={"credit_balance": before}, after={"credit_balance": c.credit_balance})
            logger.info("customer %s credit reconciled: %s -> %s", c.id, before, c.credit_balance)
    return {"customer": customer_row(c), "previous_balance": as_float(before), "adjusted": c.credit_balance != before}


def settle(db: Session, ctx: ActorContext, customer_id: str, amount) -> dict:
    """
    Apply a cash payment against the customer's oldest credit orders.

    The amount is clamped to what is owed, then orders are paid off strictly
    oldest-first; allocation stops at the first order the remainder cannot
    fully cover. Orders are never partially paid.
    """
    requested = _money(amount)
    if requested <= 0:
        raise ValidationFailed("Settlement amount must be positive")

    with transaction(db):
        c = get_customer(db, ctx, customer_id, lock=True)
        balance = outstanding_credit(db, c.id)
        available = min(requested, balance)

        now = utcnow()
        remaining = available
        settled: list[Order] = []
        for o in pending_credit_orders(db, c.id).with_for_update().all():
            owed = _money(o.total_amount)
            if owed > remaining:
                break
            o.payment_status = PaymentStatus.PAID
            o.paid_at = now
            remaining -= owed
            settled.append(o)

        allocated = _money(available - remaining)
        c.credit_balance = _money(balance - allocated)
        audit(db, ctx, "Customer", c.id, "CREDIT_SETTLEMENT",
              before={"credit_balance": balance},
              after={
                  "credit_balance": c.credit_balance,
                  "requested": requested,
                  "allocated": allocated,
                  "orders": [o.id for o in settled],
              })

    logger.info("customer %s settled %s of %s across %d orders", c.id, allocated, requested, len(settled))
    return {
        "customer": customer_row(c),
        "settled_order_ids": [o.id for o in settled],
        "settled_amount": as_float(allocated),
        "unallocated_amount": as_float(requested - allocated),
    }
