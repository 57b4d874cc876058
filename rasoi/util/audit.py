import json
from sqlalchemy.orm import Session
from rasoi.context import ActorContext
from rasoi.models.core import AuditLog

def audit(db: Session, ctx: ActorContext, entity: str, entity_id: str,
          action: str, before: dict | None = None, after: dict | None = None, reason: str | None = None):
    """Stage an audit row in the caller's transaction; it commits or rolls back with the change it describes."""
    entry = AuditLog(
        tenant_id=ctx.tenant_id,
        restaurant_id=ctx.restaurant_id,
        actor_id=ctx.actor_id,
        entity=entity, entity_id=entity_id,
        action=action,
        reason=reason,
        before=json.dumps(before, default=str) if before else None,
        after=json.dumps(after, default=str) if after else None,
    )
    db.add(entry)
    return entry
