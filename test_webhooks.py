# test_webhooks.py
import json
from decimal import Decimal

import pytest

from rasoi.integrations import get_adapter
from rasoi.integrations.signature import compute_signature, verify_signature
from rasoi.errors import NotFound
from rasoi.models import Customer, IntegrationConfig, IntegrationMenuMap, IntegrationWebhookLog, Order, Product, Restaurant
from rasoi.models.core import OrderSource, OrderType, Platform, WebhookStatus

SECRET = "zomato-shared-secret"
SWIGGY_SECRET = "swiggy-shared-secret"


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json()


@pytest.fixture
def zomato(db, seed):
    c = IntegrationConfig(
        tenant_id=seed.tenant.id, restaurant_id=seed.restaurant.id, platform=Platform.ZOMATO,
        external_restaurant_id="zr-1", webhook_secret=SECRET, is_enabled=True, auto_accept=True,
    )
    db.add(c)
    db.flush()
    db.add(IntegrationMenuMap(integration_id=c.id, external_item_id="z-paneer", product_id=seed.paneer.id))
    db.commit()
    return c


@pytest.fixture
def swiggy(db, seed):
    c = IntegrationConfig(
        tenant_id=seed.tenant.id, restaurant_id=seed.restaurant.id, platform=Platform.SWIGGY,
        external_restaurant_id="sw-1", webhook_secret=SWIGGY_SECRET, is_enabled=True, auto_accept=True,
    )
    db.add(c)
    db.flush()
    db.add(IntegrationMenuMap(integration_id=c.id, external_item_id="s-paneer", product_id=seed.paneer.id))
    db.commit()
    return c


def _payload(order_id="Z-1001", **extra):
    body = {
        "order_id": order_id,
        "restaurant_id": "zr-1",
        "customer": {"name": "Meera", "phone": "+91 98111 22233"},
        "items": [{"id": "z-paneer", "name": "Paneer Tikka", "quantity": 2, "price": 180}],
        "total": 360,
    }
    body.update(extra)
    return json.dumps(body).encode()


def _post(client, raw, signature=None, platform="zomato"):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["X-Zomato-Signature"] = signature
    return client.post(f"/integrations/webhooks/{platform}", content=raw, headers=headers)


def _logs(db):
    db.expire_all()
    return db.query(IntegrationWebhookLog).order_by(IntegrationWebhookLog.created_at.asc()).all()


def test_signature_helpers():
    sig = compute_signature(SECRET, b"{}")
    assert verify_signature(SECRET, b"{}", sig)
    assert verify_signature(SECRET, b"{}", "sha256=" + sig.upper())
    assert not verify_signature(SECRET, b"{ }", sig)
    assert not verify_signature(None, b"{}", sig)
    assert not verify_signature(SECRET, b"{}", None)


def test_signed_delivery_creates_order(client, db, seed, zomato):
    raw = _payload()
    out = jprint("webhook", _post(client, raw, compute_signature(SECRET, raw)))
    assert out["success"] is True and out["is_duplicate"] is False

    db.expire_all()
    order = db.get(Order, out["order_id"])
    assert order.source == OrderSource.ZOMATO
    assert order.external_order_id == "Z-1001"
    assert order.order_type == OrderType.DELIVERY
    assert order.confirmed_at is not None
    # billed from our catalog, not the platform's figures
    assert order.total_amount == Decimal("180")
    assert order.customer_phone == "+919811122233"

    (log,) = _logs(db)
    assert log.signature_valid is True
    assert log.status == WebhookStatus.PROCESSED
    assert log.order_id == order.id


def test_tampered_body_is_logged_and_ignored(client, db, seed, zomato):
    signed = _payload()
    tampered = _payload(total=1)
    r = _post(client, tampered, compute_signature(SECRET, signed))
    assert r.status_code == 200
    assert r.json()["success"] is False

    (log,) = _logs(db)
    assert log.signature_valid is False
    assert log.status == WebhookStatus.FAILED
    assert log.failure_reason == "Invalid webhook signature"
    assert db.query(Order).count() == 0


def test_duplicate_delivery_returns_first_order(client, db, seed, zomato):
    raw = _payload()
    sig = compute_signature(SECRET, raw)
    first = jprint("first delivery", _post(client, raw, sig))
    second = jprint("second delivery", _post(client, raw, sig))

    assert second["is_duplicate"] is True
    assert second["order_id"] == first["order_id"]
    assert db.query(Order).count() == 1
    assert [l.status for l in _logs(db)] == [WebhookStatus.PROCESSED, WebhookStatus.PROCESSED]


@pytest.mark.parametrize("raw,reason", [
    (b"not json", "Invalid payload"),
    (json.dumps({"order_id": "Z-1", "items": []}).encode(), "Invalid payload"),
    (_payload(restaurant_id="someone-else"), "Unknown integration"),
])
def test_bad_deliveries_are_logged(client, db, seed, zomato, raw, reason):
    r = _post(client, raw, compute_signature(SECRET, raw))
    assert r.status_code == 200
    assert r.json() == {"success": False, "error": reason, "webhook_log_id": r.json()["webhook_log_id"]}
    (log,) = _logs(db)
    assert log.failure_reason == reason
    assert log.integration_id is None


def test_disabled_integration(client, db, seed, zomato):
    zomato.is_enabled = False
    db.commit()
    raw = _payload()
    r = _post(client, raw, compute_signature(SECRET, raw))
    assert r.json()["error"] == "Integration disabled"
    assert db.query(Order).count() == 0


def test_unknown_platform_is_404(client, seed):
    r = _post(client, b"{}", platform="ubereats")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"


def test_replay_after_mapping_fix(client, db, seed, zomato, auth_headers):
    raw = _payload(items=[{"id": "z-chai", "name": "Chai", "quantity": 1}])
    out = _post(client, raw, compute_signature(SECRET, raw)).json()
    assert out == {"success": False, "error": "No menu items could be mapped", "webhook_log_id": out["webhook_log_id"]}

    jprint("map chai", client.put(f"/integrations/{zomato.id}/menu", headers=auth_headers,
                                  json={"external_item_id": "z-chai", "product_id": seed.chai.id}))
    replayed = jprint("replay", client.post(f"/integrations/logs/{out['webhook_log_id']}/replay", headers=auth_headers))
    assert replayed["success"] is True

    (log,) = _logs(db)
    assert log.status == WebhookStatus.REPLAYED
    assert log.replayed_by == "manager-1"
    order = db.get(Order, replayed["order_id"])
    # replays always wait for staff to accept
    assert order.confirmed_at is None

    again = jprint("replay again", client.post(f"/integrations/logs/{log.id}/replay", headers=auth_headers))
    assert again["is_duplicate"] is True


def test_invalid_signature_cannot_be_replayed(client, db, seed, zomato, auth_headers):
    raw = _payload()
    out = _post(client, raw, "deadbeef").json()
    r = client.post(f"/integrations/logs/{out['webhook_log_id']}/replay", headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


def test_swiggy_aliases_normalize():
    adapter = get_adapter("SWIGGY")
    payload = {
        "orderId": 777,
        "outletId": "sw-9",
        "orderItems": [{"itemId": "s-1", "itemName": "Dal", "qty": "3"}],
    }
    assert adapter.is_valid_payload(payload)
    assert adapter.get_external_restaurant_id(payload) == "sw-9"
    normalized = adapter.normalize(payload)
    assert normalized.external_order_id == "777"
    assert normalized.customer_name is None
    assert adapter.guest_name == "Swiggy Customer"
    assert [(i.external_item_id, i.name, i.quantity) for i in normalized.items] == [("s-1", "Dal", 3)]


def test_get_adapter_rejects_unknown():
    with pytest.raises(NotFound):
        get_adapter("foodpanda")


def test_log_detail_keeps_raw_payload(client, db, seed, zomato, auth_headers, staff_headers):
    raw = _payload()
    out = _post(client, raw, "deadbeef").json()
    log = jprint("log", client.get(f"/integrations/logs/{out['webhook_log_id']}", headers=auth_headers))
    assert log["payload_raw"] == raw.decode()
    assert log["signature_valid"] is False

    listed = jprint("logs", client.get("/integrations/logs", headers=staff_headers, params={"status": "FAILED"}))
    assert listed["total"] == 1
    assert "payload_raw" not in listed["items"][0]
    assert client.get(f"/integrations/logs/{out['webhook_log_id']}", headers=staff_headers).status_code == 403


def test_integration_setup_over_http(client, seed, auth_headers, staff_headers):
    body = {"platform": "SWIGGY", "external_restaurant_id": "sw-9", "webhook_secret": "swiggy-secret-1"}
    assert client.post("/integrations/", headers=staff_headers, json=body).status_code == 403

    created = client.post("/integrations/", headers=auth_headers, json=body)
    assert created.status_code == 201, created.text
    integration = created.json()
    assert integration["is_enabled"] is False
    assert integration["has_secret"] is True
    assert "webhook_secret" not in integration

    r = client.post("/integrations/", headers=auth_headers, json=body)
    assert r.status_code == 400

    iid = integration["id"]
    mapped = jprint("map", client.put(f"/integrations/{iid}/menu", headers=auth_headers,
                                      json={"external_item_id": "s-1", "product_id": seed.dal.id}))
    assert jprint("menu", client.get(f"/integrations/{iid}/menu", headers=auth_headers)) == [mapped]
    r = client.put(f"/integrations/{iid}/menu", headers=auth_headers,
                   json={"external_item_id": "s-2", "product_id": "missing"})
    assert r.status_code == 404

    enabled = jprint("enable", client.patch(f"/integrations/{iid}", headers=auth_headers, json={"is_enabled": True}))
    assert enabled["is_enabled"] is True

    raw = json.dumps({"orderId": "S-1", "outletId": "sw-9", "orderItems": [{"itemId": "s-1", "qty": 1}]}).encode()
    r = client.post("/integrations/webhooks/swiggy", content=raw,
                    headers={"X-Swiggy-Signature": compute_signature("swiggy-secret-1", raw)})
    out = jprint("swiggy webhook", r)
    assert out["success"] is True
    order = jprint("order", client.get(f"/orders/{out['order_id']}", headers=auth_headers))
    assert order["source"] == "SWIGGY"
    assert order["customer_name"] == "Swiggy Customer"
    # auto-accept is off by default
    assert order["confirmed_at"] is None

    assert jprint("unmap", client.delete(f"/integrations/{iid}/menu/{mapped['id']}", headers=auth_headers)) == {
        "message": "Mapping removed"}
    assert jprint("list", client.get("/integrations/", headers=auth_headers))[0]["platform"] == "SWIGGY"


PLATFORM_BODIES = {
    "zomato": (SECRET, {"order_id": "P-1", "restaurant_id": "zr-1",
                        "items": [{"id": "z-paneer", "quantity": 1}]}),
    "swiggy": (SWIGGY_SECRET, {"orderId": "P-1", "outletId": "sw-1",
                               "orderItems": [{"itemId": "s-paneer", "qty": 1}]}),
}


@pytest.mark.parametrize("platform", ["zomato", "swiggy"])
@pytest.mark.parametrize("header", ["X-{platform}-Signature", "X-Webhook-Signature", "X-Signature"])
def test_signed_delivery_on_every_signature_header(client, db, seed, zomato, swiggy, platform, header):
    secret, body = PLATFORM_BODIES[platform]
    raw = json.dumps(body).encode()
    r = client.post(f"/integrations/webhooks/{platform}", content=raw,
                    headers={header.format(platform=platform.title()): compute_signature(secret, raw)})
    out = jprint(f"{platform} webhook", r)
    assert out["success"] is True and out["is_duplicate"] is False

    db.expire_all()
    order = db.get(Order, out["order_id"])
    assert order.source == OrderSource(platform.upper())
    assert order.total_amount == Decimal("90.00")
    assert order.customer_name == f"{platform.title()} Customer"
    (log,) = _logs(db)
    assert log.signature_valid is True
    assert log.status == WebhookStatus.PROCESSED


def test_nameless_delivery_keeps_stored_customer_name(client, db, seed, zomato):
    raw = _payload(customer={"phone": seed.customer.phone})
    out = jprint("webhook", _post(client, raw, compute_signature(SECRET, raw)))
    assert out["success"] is True

    db.expire_all()
    order = db.get(Order, out["order_id"])
    assert order.customer_id == seed.customer.id
    assert order.customer_name == "Asha"
    assert db.get(Customer, seed.customer.id).name == "Asha"

    raw = _payload(order_id="Z-1002", customer={"name": "Someone Else", "phone": seed.customer.phone})
    jprint("named webhook", _post(client, raw, compute_signature(SECRET, raw)))
    db.expire_all()
    assert db.get(Customer, seed.customer.id).name == "Asha"


def test_nameless_delivery_for_new_phone(client, db, seed, zomato):
    raw = _payload(customer={"phone": "+919800000001"})
    out = jprint("webhook", _post(client, raw, compute_signature(SECRET, raw)))

    db.expire_all()
    order = db.get(Order, out["order_id"])
    assert order.customer_name == "Zomato Customer"
    # the placeholder stays on the order; the customer record is filled by the first real name
    customer = db.get(Customer, order.customer_id)
    assert customer.name == "+919800000001"

    raw = _payload(order_id="Z-1002", customer={"name": "Nisha", "phone": "+919800000001"})
    jprint("named webhook", _post(client, raw, compute_signature(SECRET, raw)))
    db.expire_all()
    assert db.get(Customer, order.customer_id).name == "Nisha"


def test_same_platform_order_id_in_two_restaurants(client, db, seed, zomato):
    other = Restaurant(tenant_id=seed.tenant.id, name="Spice Route Annex", slug="spice-route-annex", is_active=True)
    db.add(other)
    db.flush()
    scope = dict(tenant_id=seed.tenant.id, restaurant_id=other.id)
    kulfi = Product(name="Kulfi", price=Decimal("60"), discount_percent=Decimal("0"), cost=Decimal("15"), **scope)
    annex = IntegrationConfig(platform=Platform.ZOMATO, external_restaurant_id="zr-2", webhook_secret=SECRET,
                              is_enabled=True, auto_accept=True, **scope)
    db.add_all([kulfi, annex])
    db.flush()
    db.add(IntegrationMenuMap(integration_id=annex.id, external_item_id="z-paneer", product_id=kulfi.id))
    db.commit()

    here = _payload(order_id="Z-SHARED")
    there = _payload(order_id="Z-SHARED", restaurant_id="zr-2")
    first = jprint("first restaurant", _post(client, here, compute_signature(SECRET, here)))
    second = jprint("second restaurant", _post(client, there, compute_signature(SECRET, there)))

    assert second["is_duplicate"] is False
    assert second["order_id"] != first["order_id"]
    db.expire_all()
    assert db.get(Order, first["order_id"]).restaurant_id == seed.restaurant.id
    annex_order = db.get(Order, second["order_id"])
    assert annex_order.restaurant_id == other.id
    assert annex_order.total_amount == Decimal("120.00")
