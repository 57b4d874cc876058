import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import NotFound
from rasoi.models.core import Customer, Order
from rasoi.models.common import utcnow
from rasoi.services.pricing import _money, as_float

logger = logging.getLogger(__name__)


def customer_row(c: Customer) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "credit_balance": as_float(c.credit_balance),
        "total_orders": c.total_orders or 0,
        "total_spent": as_float(c.total_spent),
        "last_visit_at": c.last_visit_at,
    }


def get_customer(db: Session, ctx: ActorContext, customer_id: str, lock: bool = False) -> Customer:
    q = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.tenant_id == ctx.tenant_id,
        Customer.restaurant_id == ctx.restaurant_id,
        Customer.deleted_at.is_(None),
    )
    if lock:
        q = q.with_for_update()
    c = q.first()
    if not c:
        raise NotFound("Customer not found")
    return c


def upsert_customer(db: Session, ctx: ActorContext, name: str | None, phone: str, overwrite_name: bool = True) -> Customer:
    """
    Find the restaurant's customer by phone, creating it on first visit. Caller owns the transaction.
    Without `overwrite_name` a stored name is kept and only a missing one (saved as the phone) is filled.
    """
    c = (
        db.query(Customer)
        .filter(
            Customer.tenant_id == ctx.tenant_id,
            Customer.restaurant_id == ctx.restaurant_id,
            Customer.phone == phone,
        )
        .first()
    )
    if c:
        if name and c.name != name and (overwrite_name or c.name in (None, "", c.phone)):
            c.name = name
        return c
    c = Customer(
        tenant_id=ctx.tenant_id,
        restaurant_id=ctx.restaurant_id,
        name=name or phone,
        phone=phone,
        credit_balance=Decimal("0"),
        total_orders=0,
        total_spent=Decimal("0"),
    )
    db.add(c)
    db.flush()
    return c


def list_customers(db: Session, ctx: ActorContext, search: str | None = None, with_credit: bool = False,
                   page: int = 1, size: int = 20) -> dict:
    q = db.query(Customer).filter(
        Customer.tenant_id == ctx.tenant_id,
        Customer.restaurant_id == ctx.restaurant_id,
        Customer.deleted_at.is_(None),
    )
    if search:
        like = f"%{search}%"
        q = q.filter((Customer.name.ilike(like)) | (Customer.phone.ilike(like)))
    if with_credit:
        q = q.filter(Customer.credit_balance > 0)

    page = max(page, 1)
    size = size if 1 <= size <= 100 else 20
    total = q.count()
    rows = q.order_by(Customer.name.asc(), Customer.id.asc()).offset((page - 1) * size).limit(size).all()
    return {"items": [customer_row(c) for c in rows], "total": total, "page": page, "size": size}


def record_completion_quietly(db: Session, ctx: ActorContext, order: Order) -> None:
    """Bump visit statistics for a just-completed order. Best-effort: failures are logged, never raised."""
    if not order.customer_id:
        return
    try:
        with transaction(db):
            c = get_customer(db, ctx, order.customer_id, lock=True)
            c.total_orders = (c.total_orders or 0) + 1
            c.total_spent = _money((c.total_spent or 0) + (order.total_amount or 0))
            c.last_visit_at = order.completed_at or utcnow()
    except Exception:
        logger.warning("customer stats update failed for order %s", order.id, exc_info=True)
