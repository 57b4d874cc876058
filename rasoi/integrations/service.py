import json
import logging
import re
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.context import ActorContext, ROLE_INTEGRATION
from rasoi.db import transaction
from rasoi.errors import AppError, NotFound, ValidationFailed
from rasoi.integrations import get_adapter
from rasoi.integrations.base import NormalizedItem, PayloadError
from rasoi.integrations.signature import extract_signature, verify_signature
from rasoi.models.common import utcnow
from rasoi.models.core import (
    IntegrationConfig, IntegrationMenuMap, IntegrationWebhookLog, Order, OrderSource, OrderType,
    Platform, Product, WebhookStatus,
)
from rasoi.schemas.integrations import IntegrationIn, IntegrationUpdate, MenuMapIn
from rasoi.schemas.orders import OrderItemIn
from rasoi.services.orders import create_order, find_by_external_id
from rasoi.services.tables import find_table_by_number

logger = logging.getLogger(__name__)

DUPLICATE_NOTE = "Duplicate order (idempotent)"


# ── Rows ────────────────────────────────────────────────────────────────────
def integration_row(c: IntegrationConfig) -> dict:
    return {
        "id": c.id,
        "platform": c.platform.value,
        "external_restaurant_id": c.external_restaurant_id,
        "is_enabled": c.is_enabled,
        "auto_accept": c.auto_accept,
        "has_secret": bool(c.webhook_secret),
    }


def menu_map_row(m: IntegrationMenuMap) -> dict:
    return {
        "id": m.id,
        "integration_id": m.integration_id,
        "external_item_id": m.external_item_id,
        "product_id": m.product_id,
        "is_active": m.is_active,
    }


def webhook_log_row(l: IntegrationWebhookLog, with_payload: bool = False) -> dict:
    row = {
        "id": l.id,
        "platform": l.platform.value,
        "integration_id": l.integration_id,
        "external_event_id": l.external_event_id,
        "signature_valid": l.signature_valid,
        "status": l.status.value,
        "failure_reason": l.failure_reason,
        "order_id": l.order_id,
        "received_at": l.created_at,
        "processed_at": l.processed_at,
        "replayed_by": l.replayed_by,
    }
    if with_payload:
        row["payload_raw"] = l.payload_raw
    return row


# ── Secrets & lookups ───────────────────────────────────────────────────────
def resolve_webhook_secret(config: IntegrationConfig) -> str | None:
    """The plain secret used for HMAC verification; storage at rest is the secret store's concern."""
    return config.webhook_secret or None


def find_config(db: Session, platform: Platform, external_restaurant_id: str) -> IntegrationConfig | None:
    return (
        db.query(IntegrationConfig)
        .filter(
            IntegrationConfig.platform == platform,
            IntegrationConfig.external_restaurant_id == str(external_restaurant_id),
            IntegrationConfig.deleted_at.is_(None),
        )
        .first()
    )


def get_integration(db: Session, ctx: ActorContext, integration_id: str) -> IntegrationConfig:
    c = (
        db.query(IntegrationConfig)
        .filter(
            IntegrationConfig.id == integration_id,
            IntegrationConfig.tenant_id == ctx.tenant_id,
            IntegrationConfig.restaurant_id == ctx.restaurant_id,
            IntegrationConfig.deleted_at.is_(None),
        )
        .first()
    )
    if not c:
        raise NotFound("Integration not found")
    return c


def _parse(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def _clean_phone(phone: Any) -> str | None:
    if not phone:
        return None
    digits = re.sub(r"[^\d+]", "", str(phone))
    return digits[:20] if len(digits.lstrip("+")) >= 10 else None


def _finish(db: Session, log: IntegrationWebhookLog, status: WebhookStatus,
            reason: str | None = None, order_id: str | None = None) -> None:
    with transaction(db):
        log.status = status
        log.failure_reason = reason
        if order_id:
            log.order_id = order_id
        log.processed_at = utcnow()


# ── Ingestion ───────────────────────────────────────────────────────────────
def ingest(db: Session, platform: str, raw_body: bytes, headers: Mapping[str, str]) -> dict:
    """
    Entry point for a platform webhook delivery.

    Every delivery is logged with its signature verdict before anything is
    decided. Problems with the delivery itself come back as
    `{"success": False}` rather than an error so the platform stops
    retrying; only an unknown platform raises.
    """
    # webhook logs are keyed by the Platform enum, so an unknown path is a 404 with no log row
    adapter = get_adapter(platform)
    lowered = {k.lower(): v for k, v in headers.items()}
    payload = _parse(raw_body)
    valid_shape = adapter.is_valid_payload(payload)

    config = None
    external_event_id = None
    if valid_shape:
        external_event_id = adapter.get_external_order_id(payload)
        try:
            config = find_config(db, adapter.platform, adapter.get_external_restaurant_id(payload))
        except PayloadError:
            config = None

    signature = extract_signature(lowered, adapter.signature_headers)
    signature_valid = config is not None and verify_signature(resolve_webhook_secret(config), raw_body, signature)

    with transaction(db):
        log = IntegrationWebhookLog(
            platform=adapter.platform,
            integration_id=config.id if config else None,
            tenant_id=config.tenant_id if config else None,
            restaurant_id=config.restaurant_id if config else None,
            external_event_id=external_event_id,
            payload_raw=raw_body.decode("utf-8", errors="replace"),
            signature_valid=signature_valid,
            status=WebhookStatus.RECEIVED,
        )
        db.add(log)

    if not valid_shape:
        failure = "Invalid payload"
    elif config is None:
        failure = "Unknown integration"
    elif not config.is_enabled:
        failure = "Integration disabled"
    elif not signature_valid:
        failure = "Invalid webhook signature"
    else:
        failure = None

    if failure:
        logger.warning("%s webhook %s rejected: %s", adapter.platform.value, log.id, failure)
        _finish(db, log, WebhookStatus.FAILED, failure)
        return {"success": False, "error": failure, "webhook_log_id": log.id}

    return process_webhook(db, config, log, payload)


def resolve_menu_items(db: Session, config: IntegrationConfig, items: list[NormalizedItem]) -> list[OrderItemIn]:
    ids = {i.external_item_id for i in items}
    maps = {
        m.external_item_id: m
        for m in db.query(IntegrationMenuMap).filter(
            IntegrationMenuMap.integration_id == config.id,
            IntegrationMenuMap.external_item_id.in_(ids),
            IntegrationMenuMap.is_active.is_(True),
        )
    }
    resolved = []
    for i in items:
        m = maps.get(i.external_item_id)
        if not m:
            continue
        resolved.append(OrderItemIn(
            product_id=m.product_id,
            quantity=min(i.quantity, 100),
            notes=i.notes[:200] if i.notes else None,
        ))
    return resolved


def _duplicate(db: Session, log: IntegrationWebhookLog, existing: Order) -> dict:
    logger.info("duplicate %s delivery for external order %s", existing.source.value, existing.external_order_id)
    _finish(db, log, WebhookStatus.PROCESSED, DUPLICATE_NOTE, order_id=existing.id)
    return {"success": True, "order_id": existing.id, "order_number": existing.order_number, "is_duplicate": True}


def process_webhook(db: Session, config: IntegrationConfig, log: IntegrationWebhookLog, payload: dict,
                    auto_accept: bool | None = None) -> dict:
    """Normalize a verified payload and place the order once per external order id."""
    adapter = get_adapter(config.platform)
    source = OrderSource(config.platform.value)
    ctx = ActorContext(tenant_id=config.tenant_id, restaurant_id=config.restaurant_id, role=ROLE_INTEGRATION)
    external_id = None
    try:
        normalized = adapter.normalize(payload)
        external_id = normalized.external_order_id

        existing = find_by_external_id(db, config.restaurant_id, source, external_id)
        if existing:
            return _duplicate(db, log, existing)

        items = resolve_menu_items(db, config, normalized.items)
        if not items:
            logger.warning("no mapped menu items in %s order %s", source.value, external_id)
            _finish(db, log, WebhookStatus.FAILED, "No menu items could be mapped")
            return {"success": False, "error": "No menu items could be mapped", "webhook_log_id": log.id}
        if len(items) < len(normalized.items):
            logger.warning("%d unmapped items dropped from %s order %s",
                           len(normalized.items) - len(items), source.value, external_id)

        table = find_table_by_number(db, ctx, normalized.table_number) if normalized.table_number else None
        order = create_order(
            db, ctx, items,
            order_type=OrderType.DINE_IN if table else OrderType.DELIVERY,
            source=source,
            table_id=table.id if table else None,
            customer_name=normalized.customer_name,
            customer_phone=_clean_phone(normalized.customer_phone),
            notes=normalized.notes,
            external_order_id=external_id,
            external_metadata=payload,
            confirmed=config.auto_accept if auto_accept is None else auto_accept,
            overwrite_customer_name=False,
            fallback_customer_name=adapter.guest_name,
        )
    except IntegrityError:
        # a concurrent delivery of the same order got its insert in first
        existing = find_by_external_id(db, config.restaurant_id, source, external_id) if external_id else None
        if existing:
            return _duplicate(db, log, existing)
        logger.warning("integrity error ingesting %s order %s", source.value, external_id, exc_info=True)
        _finish(db, log, WebhookStatus.FAILED, "Could not store order")
        return {"success": False, "error": "Could not store order", "webhook_log_id": log.id}
    except Exception as e:
        message = e.message if isinstance(e, AppError) else (str(e) or e.__class__.__name__)
        logger.warning("failed to process %s webhook %s: %s", source.value, log.id, message, exc_info=True)
        _finish(db, log, WebhookStatus.FAILED, message)
        return {"success": False, "error": message, "webhook_log_id": log.id}

    _finish(db, log, WebhookStatus.PROCESSED, order_id=order.id)
    logger.info("%s order %s ingested as %s", source.value, external_id, order.order_number)
    return {"success": True, "order_id": order.id, "order_number": order.order_number, "is_duplicate": False}


def get_webhook_log(db: Session, ctx: ActorContext, log_id: str) -> IntegrationWebhookLog:
    log = (
        db.query(IntegrationWebhookLog)
        .filter(
            IntegrationWebhookLog.id == log_id,
            IntegrationWebhookLog.tenant_id == ctx.tenant_id,
            IntegrationWebhookLog.restaurant_id == ctx.restaurant_id,
        )
        .first()
    )
    if not log:
        raise NotFound("Webhook log not found")
    return log


def replay_webhook(db: Session, ctx: ActorContext, log_id: str) -> dict:
    log = get_webhook_log(db, ctx, log_id)
    if log.status in (WebhookStatus.PROCESSED, WebhookStatus.REPLAYED) and log.order_id:
        return {"success": True, "order_id": log.order_id, "is_duplicate": True}
    if not log.signature_valid:
        raise ValidationFailed("Webhooks with an invalid signature cannot be replayed")
    config = db.get(IntegrationConfig, log.integration_id) if log.integration_id else None
    if not config:
        raise NotFound("Integration not found")
    payload = _parse(log.payload_raw.encode("utf-8"))
    if not get_adapter(config.platform).is_valid_payload(payload):
        raise ValidationFailed("Stored payload is not a valid order")

    with transaction(db):
        log.status = WebhookStatus.RECEIVED
        log.failure_reason = None
        log.replayed_by = ctx.actor_id

    result = process_webhook(db, config, log, payload, auto_accept=False)
    if result["success"]:
        with transaction(db):
            log.status = WebhookStatus.REPLAYED
    return result


# ── Configuration ───────────────────────────────────────────────────────────
def create_integration(db: Session, ctx: ActorContext, body: IntegrationIn) -> IntegrationConfig:
    """New integrations start disabled until menu mapping is done."""
    try:
        with transaction(db):
            c = IntegrationConfig(
                tenant_id=ctx.tenant_id,
                restaurant_id=ctx.restaurant_id,
                platform=Platform(body.platform),
                external_restaurant_id=body.external_restaurant_id.strip(),
                webhook_secret=body.webhook_secret,
                is_enabled=False,
                auto_accept=body.auto_accept,
            )
            db.add(c)
    except IntegrityError:
        raise ValidationFailed(f"{body.platform} restaurant {body.external_restaurant_id} is already connected")
    return c


def update_integration(db: Session, ctx: ActorContext, integration_id: str, body: IntegrationUpdate) -> IntegrationConfig:
    try:
        with transaction(db):
            c = get_integration(db, ctx, integration_id)
            for k, v in body.model_dump(exclude_none=True).items():
                setattr(c, k, v)
    except IntegrityError:
        raise ValidationFailed("That external restaurant id is already connected")
    return c


def list_integrations(db: Session, ctx: ActorContext) -> list[IntegrationConfig]:
    return (
        db.query(IntegrationConfig)
        .filter(
            IntegrationConfig.tenant_id == ctx.tenant_id,
            IntegrationConfig.restaurant_id == ctx.restaurant_id,
            IntegrationConfig.deleted_at.is_(None),
        )
        .order_by(IntegrationConfig.platform.asc())
        .all()
    )


def upsert_menu_mapping(db: Session, ctx: ActorContext, integration_id: str, body: MenuMapIn) -> IntegrationMenuMap:
    with transaction(db):
        c = get_integration(db, ctx, integration_id)
        product = (
            db.query(Product)
            .filter(
                Product.id == body.product_id,
                Product.tenant_id == ctx.tenant_id,
                Product.restaurant_id == ctx.restaurant_id,
                Product.deleted_at.is_(None),
            )
            .first()
        )
        if not product:
            raise NotFound("Product not found")
        m = (
            db.query(IntegrationMenuMap)
            .filter(IntegrationMenuMap.integration_id == c.id, IntegrationMenuMap.external_item_id == body.external_item_id)
            .first()
        )
        if not m:
            m = IntegrationMenuMap(integration_id=c.id, external_item_id=body.external_item_id)
            db.add(m)
        m.product_id = product.id
        m.is_active = body.is_active
    return m


def list_menu_mappings(db: Session, ctx: ActorContext, integration_id: str) -> list[IntegrationMenuMap]:
    c = get_integration(db, ctx, integration_id)
    return (
        db.query(IntegrationMenuMap)
        .filter(IntegrationMenuMap.integration_id == c.id)
        .order_by(IntegrationMenuMap.external_item_id.asc())
        .all()
    )


def delete_menu_mapping(db: Session, ctx: ActorContext, integration_id: str, mapping_id: str) -> None:
    with transaction(db):
        c = get_integration(db, ctx, integration_id)
        m = (
            db.query(IntegrationMenuMap)
            .filter(IntegrationMenuMap.id == mapping_id, IntegrationMenuMap.integration_id == c.id)
            .first()
        )
        if not m:
            raise NotFound("Menu mapping not found")
        db.delete(m)


def list_webhook_logs(db: Session, ctx: ActorContext, integration_id: str | None = None, status: str | None = None,
                      page: int = 1, size: int = 20) -> dict:
    q = db.query(IntegrationWebhookLog).filter(
        IntegrationWebhookLog.tenant_id == ctx.tenant_id,
        IntegrationWebhookLog.restaurant_id == ctx.restaurant_id,
    )
    if integration_id:
        q = q.filter(IntegrationWebhookLog.integration_id == integration_id)
    if status:
        try:
            q = q.filter(IntegrationWebhookLog.status == WebhookStatus(status))
        except ValueError:
            raise ValidationFailed(f"Unknown webhook status: {status}")
    page = max(page, 1)
    size = size if 1 <= size <= 100 else 20
    total = q.count()
    rows = (
        q.order_by(IntegrationWebhookLog.created_at.desc(), IntegrationWebhookLog.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {"items": [webhook_log_row(l) for l in rows], "total": total, "page": page, "size": size}
