# test_order_store.py
import re
import string
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import insert

from rasoi.errors import InternalError, NotFound, ValidationFailed
from rasoi.models import AuditLog, Customer, Order, OrderItem
from rasoi.models.core import ItemStatus, OrderStatus, OrderType
from rasoi.schemas.orders import OrderItemIn, OrderItemUpdateIn, PaymentIn
from rasoi.services import orders as store
from rasoi.services import payments, state
from rasoi.services.pricing import subtotal

ORDER_NUMBER = re.compile(r"^#ORD-[A-HJ-NP-Z2-9]{2}(\d)\1$")


def _assert_total_consistent(db, order):
    items = store.load_items(db, order.id)
    assert order.total_amount == subtotal(items) - (order.discount_amount or Decimal("0"))


def _new_order(db, ctx, seed, **kw):
    return store.create_order(db, ctx, [
        OrderItemIn(product_id=seed.paneer.id, quantity=2),
        OrderItemIn(product_id=seed.chai.id, quantity=1),
    ], **kw)


def test_create_order_prices_server_side(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    assert order.total_amount == Decimal("225.00")
    assert order.status == OrderStatus.ACTIVE
    assert order.order_type == OrderType.TAKEAWAY
    assert order.confirmed_at is not None
    assert ORDER_NUMBER.match(order.order_number)
    items = store.load_items(db, order.id)
    assert sorted((i.name_snapshot, i.quantity, i.status.value) for i in items) == [
        ("Masala Chai", 1, "PENDING"),
        ("Paneer Tikka", 2, "PENDING"),
    ]


def test_snapshots_survive_catalog_changes(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    seed.paneer.price = Decimal("500")
    db.commit()
    store.add_items(db, ctx, order.id, [OrderItemIn(product_id=seed.chai.id, quantity=1)])
    db.refresh(order)
    assert order.total_amount == Decimal("270.00")


def test_customer_upserted_by_phone(db, seed, ctx):
    order = _new_order(db, ctx, seed, customer_name="Asha K", customer_phone="+919876543210")
    assert order.customer_id == seed.customer.id
    db.refresh(seed.customer)
    assert seed.customer.name == "Asha K"

    fresh = _new_order(db, ctx, seed, customer_name="Ravi", customer_phone="+919812345678")
    assert db.query(Customer).filter(Customer.id == fresh.customer_id).one().name == "Ravi"


def test_unknown_table_number_is_not_found(db, seed, ctx):
    with pytest.raises(NotFound):
        _new_order(db, ctx, seed, table_number="T99")
    assert db.query(Order).count() == 0


def test_total_recomputed_after_every_item_change(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    order = store.add_items(db, ctx, order.id, [OrderItemIn(product_id=seed.dal.id, quantity=2)])
    assert order.total_amount == Decimal("425.00")
    _assert_total_consistent(db, order)

    added = [i for i in store.load_items(db, order.id) if i.status == ItemStatus.REORDER]
    assert len(added) == 1

    order = store.update_item(db, ctx, order.id, added[0].id, OrderItemUpdateIn(quantity=1))
    assert order.total_amount == Decimal("325.00")
    _assert_total_consistent(db, order)

    order = store.remove_item(db, ctx, order.id, added[0].id)
    assert order.total_amount == Decimal("225.00")
    _assert_total_consistent(db, order)


def test_removing_items_clamps_discount(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    order = payments.update_payment(db, ctx, order.id, PaymentIn(
        payment_method="CASH", payment_status="PENDING", discount_amount=Decimal("100"),
    ))
    assert order.total_amount == Decimal("125.00")

    paneer_line = next(i for i in store.load_items(db, order.id) if i.name_snapshot == "Paneer Tikka")
    order = store.remove_item(db, ctx, order.id, paneer_line.id)
    assert order.discount_amount == Decimal("45.00")
    assert order.total_amount == Decimal("0.00")
    _assert_total_consistent(db, order)


def test_served_item_cannot_be_downgraded(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    item = store.load_items(db, order.id)[0]
    store.update_item(db, ctx, order.id, item.id, OrderItemUpdateIn(status="SERVED"))
    with pytest.raises(ValidationFailed, match="already served"):
        store.update_item(db, ctx, order.id, item.id, OrderItemUpdateIn(status="PREPARING"))
    db.refresh(item)
    assert item.status == ItemStatus.SERVED


def test_kitchen_progress_is_stamped(db, seed, ctx):
    order = _new_order(db, ctx, seed)
    first, second = store.load_items(db, order.id)
    order = store.update_item(db, ctx, order.id, first.id, OrderItemUpdateIn(status="PREPARING"))
    assert order.preparing_at is not None and order.ready_at is None
    store.update_item(db, ctx, order.id, first.id, OrderItemUpdateIn(status="READY"))
    order = store.update_item(db, ctx, order.id, second.id, OrderItemUpdateIn(status="SERVED"))
    assert order.ready_at is not None


@pytest.mark.parametrize("terminal", ["COMPLETED", "CANCELLED"])
def test_terminal_orders_are_frozen(db, seed, ctx, terminal):
    order = _new_order(db, ctx, seed)
    if terminal == "COMPLETED":
        store.mark_served(db, ctx, order.id)
        state.update_status(db, ctx, order.id, "COMPLETED")
    else:
        state.update_status(db, ctx, order.id, "CANCELLED", "customer left")
    item = store.load_items(db, order.id)[0]

    attempts = [
        lambda: store.add_items(db, ctx, order.id, [OrderItemIn(product_id=seed.dal.id, quantity=1)]),
        lambda: store.update_item(db, ctx, order.id, item.id, OrderItemUpdateIn(quantity=5)),
        lambda: store.remove_item(db, ctx, order.id, item.id),
        lambda: state.update_status(db, ctx, order.id, "CANCELLED", "again"),
        lambda: payments.update_payment(db, ctx, order.id, PaymentIn(payment_method="CASH", discount_amount=Decimal("5"))),
    ]
    for attempt in attempts:
        with pytest.raises(ValidationFailed):
            attempt()

    db.expire_all()
    assert db.query(OrderItem).filter(OrderItem.order_id == order.id).count() == 2
    assert db.get(Order, order.id).total_amount == Decimal("225.00")


def test_order_number_exhaustion_is_internal_error(db, seed, ctx, monkeypatch):
    monkeypatch.setattr(store, "random_order_number", lambda: "#ORD-AB11")
    _new_order(db, ctx, seed)
    with pytest.raises(InternalError):
        _new_order(db, ctx, seed)
    assert db.query(Order).count() == 1


def test_order_numbers_are_rerolled_on_collision(db, seed, ctx, monkeypatch):
    _new_order(db, ctx, seed)
    taken = db.query(Order).one().order_number
    rolls = iter([taken, taken, "#ORD-XY77"])
    monkeypatch.setattr(store, "random_order_number", lambda: next(rolls))
    assert _new_order(db, ctx, seed).order_number == "#ORD-XY77"


def test_order_numbers_free_up_on_the_next_business_day(db, seed, ctx):
    yesterday = datetime.now(timezone.utc).date() - timedelta(days=1)
    every_number = [
        f"#ORD-{a}{b}{d}{d}"
        for a in store.ORDER_NUMBER_ALPHABET for b in store.ORDER_NUMBER_ALPHABET for d in string.digits
    ]
    assert len(every_number) == 10240
    db.execute(insert(Order), [
        {"tenant_id": seed.tenant.id, "restaurant_id": seed.restaurant.id,
         "order_number": n, "business_date": yesterday}
        for n in every_number
    ])
    db.commit()

    order = _new_order(db, ctx, seed)
    assert ORDER_NUMBER.match(order.order_number)
    assert order.business_date == yesterday + timedelta(days=1)


def test_delete_order_writes_audit_and_drops_credit(db, seed, ctx):
    order = _new_order(db, ctx, seed, customer_id=seed.customer.id)
    payments.update_payment(db, ctx, order.id, PaymentIn(payment_method="CREDIT", payment_status="PENDING"))
    db.refresh(seed.customer)
    assert seed.customer.credit_balance == Decimal("225.00")

    store.delete_order(db, ctx, order.id, reason="punched twice")
    db.expire_all()
    assert db.get(Order, order.id) is None
    assert db.get(Customer, seed.customer.id).credit_balance == Decimal("0.00")
    entry = db.query(AuditLog).filter(AuditLog.action == "DELETE").one()
    assert entry.entity_id == order.id and entry.reason == "punched twice"


def test_list_orders_filters_and_pages(db, seed, ctx):
    first = _new_order(db, ctx, seed)
    _new_order(db, ctx, seed)
    state.update_status(db, ctx, first.id, "CANCELLED", "test")

    page = store.list_orders(db, ctx, status="ACTIVE")
    assert page["total"] == 1
    everything = store.list_orders(db, ctx, size=1)
    assert everything["total"] == 2 and len(everything["items"]) == 1
    with pytest.raises(ValidationFailed):
        store.list_orders(db, ctx, status="BOGUS")
