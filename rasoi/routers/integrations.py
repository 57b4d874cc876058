from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from rasoi.context import ActorContext, MANAGEMENT_ROLES
from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.integrations import service
from rasoi.schemas.common import Msg
from rasoi.schemas.integrations import IntegrationIn, IntegrationUpdate, MenuMapIn

router = APIRouter(prefix="/integrations", tags=["integrations"])

managers = require_role(*MANAGEMENT_ROLES)


@router.post("/webhooks/{platform}")
async def receive_webhook(platform: str, request: Request, db: Session = Depends(get_db)):
    """
    Aggregator order webhook. The raw body is kept for signature checks.
    Every delivery is logged; content problems answer 200 with success=false
    so the platform does not retry them.
    """
    raw = await request.body()
    return await run_in_threadpool(service.ingest, db, platform, raw, request.headers)


# ---------- Configuration ----------
@router.get("/")
def list_integrations(db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return [service.integration_row(c) for c in service.list_integrations(db, ctx)]


@router.post("/", status_code=201)
def create_integration(body: IntegrationIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return service.integration_row(service.create_integration(db, ctx, body))


@router.patch("/{integration_id}")
def update_integration(integration_id: str, body: IntegrationUpdate, db: Session = Depends(get_db),
                       ctx: ActorContext = Depends(managers)):
    return service.integration_row(service.update_integration(db, ctx, integration_id, body))


# ---------- Menu mapping ----------
@router.get("/{integration_id}/menu")
def list_menu(integration_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return [service.menu_map_row(m) for m in service.list_menu_mappings(db, ctx, integration_id)]


@router.put("/{integration_id}/menu")
def map_item(integration_id: str, body: MenuMapIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return service.menu_map_row(service.upsert_menu_mapping(db, ctx, integration_id, body))


@router.delete("/{integration_id}/menu/{mapping_id}", response_model=Msg)
def unmap_item(integration_id: str, mapping_id: str, db: Session = Depends(get_db),
               ctx: ActorContext = Depends(managers)):
    service.delete_menu_mapping(db, ctx, integration_id, mapping_id)
    return Msg(message="Mapping removed")


# ---------- Webhook logs ----------
@router.get("/logs")
def list_logs(integration_id: str | None = None, status: str | None = None, page: int = 1, size: int = 20,
              db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return service.list_webhook_logs(db, ctx, integration_id=integration_id, status=status, page=page, size=size)


@router.get("/logs/{log_id}")
def get_log(log_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return service.webhook_log_row(service.get_webhook_log(db, ctx, log_id), with_payload=True)


@router.post("/logs/{log_id}/replay")
def replay(log_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(managers)):
    return service.replay_webhook(db, ctx, log_id)
