from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.models.core import Customer, Order, OrderItem, OrderStatus, OrderType, PaymentMethod, PaymentStatus
from rasoi.services.orders import load_items, order_row
from rasoi.services.pricing import _money, as_float, subtotal
from rasoi.services.tables import get_table

TOP_DEBTORS = 20


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, datetime.min.time()).replace(tzinfo=timezone.utc)
    end = datetime.combine(day, datetime.max.time()).replace(tzinfo=timezone.utc)
    return start, end


def compute_bill(db: Session, order: Order) -> dict:
    lines = load_items(db, order.id)
    sub = subtotal(lines)
    discount = _money(order.discount_amount)
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "lines": [
            {
                "name": l.name_snapshot,
                "quantity": l.quantity,
                "unit_price": as_float(l.price_snapshot),
                "amount": as_float(Decimal(str(l.price_snapshot)) * l.quantity),
            }
            for l in lines
        ],
        "subtotal": as_float(sub),
        "discount": as_float(discount),
        "total": as_float(order.total_amount),
        "payment_status": order.payment_status.value,
    }


def table_bill(db: Session, ctx: ActorContext, table_id: str) -> dict:
    """The running bill of whoever is seated at a table."""
    t = get_table(db, ctx, table_id)
    order = (
        db.query(Order)
        .filter(
            Order.tenant_id == ctx.tenant_id,
            Order.restaurant_id == ctx.restaurant_id,
            Order.table_id == t.id,
            Order.order_type == OrderType.DINE_IN,
            Order.status == OrderStatus.ACTIVE,
        )
        .order_by(Order.placed_at.desc())
        .first()
    )
    return {
        "table_id": t.id,
        "table_number": t.table_number,
        "table_status": t.table_status.value,
        "bill": compute_bill(db, order) if order else None,
    }


def daily_bills(db: Session, ctx: ActorContext, day: date) -> dict:
    start, end = _day_bounds(day)
    orders = (
        db.query(Order)
        .filter(
            Order.tenant_id == ctx.tenant_id,
            Order.restaurant_id == ctx.restaurant_id,
            Order.status == OrderStatus.COMPLETED,
            Order.completed_at >= start,
            Order.completed_at <= end,
        )
        .order_by(Order.completed_at.asc())
        .all()
    )
    bills = [order_row(o, load_items(db, o.id)) for o in orders]
    return {
        "date": day.isoformat(),
        "bills": bills,
        "count": len(bills),
        "total": as_float(sum((_money(o.total_amount) for o in orders), Decimal("0"))),
    }


def revenue_summary(db: Session, ctx: ActorContext, start: date, end: date) -> dict:
    """Revenue, food cost and profit over completed orders, from the snapshots taken at order time."""
    lo, _ = _day_bounds(start)
    _, hi = _day_bounds(end)
    scope = (
        Order.tenant_id == ctx.tenant_id,
        Order.restaurant_id == ctx.restaurant_id,
        Order.status == OrderStatus.COMPLETED,
        Order.completed_at >= lo,
        Order.completed_at <= hi,
    )
    revenue, count = db.query(func.coalesce(func.sum(Order.total_amount), 0), func.count(Order.id)).filter(*scope).one()
    collected = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(*scope, Order.payment_status == PaymentStatus.PAID)
        .scalar()
    )
    cost = (
        db.query(func.coalesce(func.sum(OrderItem.cost_snapshot * OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .filter(*scope)
        .scalar()
    )
    revenue, collected, cost = _money(revenue), _money(collected), _money(cost)
    return {
        "from": start.isoformat(),
        "to": end.isoformat(),
        "orders": int(count or 0),
        "revenue": as_float(revenue),
        "collected": as_float(collected),
        "outstanding": as_float(revenue - collected),
        "cost": as_float(cost),
        "profit": as_float(revenue - cost),
    }


def receivables(db: Session, ctx: ActorContext) -> dict:
    """Money owed on credit (udhaar) and who owes the most."""
    scope = (
        Customer.tenant_id == ctx.tenant_id,
        Customer.restaurant_id == ctx.restaurant_id,
        Customer.deleted_at.is_(None),
        Customer.credit_balance > 0,
    )
    total = db.query(func.coalesce(func.sum(Customer.credit_balance), 0)).filter(*scope).scalar()
    debtors = (
        db.query(Customer)
        .filter(*scope)
        .order_by(Customer.credit_balance.desc(), Customer.name.asc())
        .limit(TOP_DEBTORS)
        .all()
    )
    pending_orders = (
        db.query(func.count(Order.id))
        .filter(
            Order.tenant_id == ctx.tenant_id,
            Order.restaurant_id == ctx.restaurant_id,
            Order.status == OrderStatus.COMPLETED,
            Order.payment_method == PaymentMethod.CREDIT,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .scalar()
    )
    return {
        "total_outstanding": as_float(total),
        "pending_credit_orders": int(pending_orders or 0),
        "debtors": [
            {"customer_id": c.id, "name": c.name, "phone": c.phone, "amount": as_float(c.credit_balance)}
            for c in debtors
        ],
    }
