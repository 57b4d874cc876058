from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.orm import Session
from rasoi.context import ActorContext, ROLE_CUSTOMER
from rasoi.db import get_db
from rasoi.errors import Forbidden, NotFound, Unauthorized
from rasoi.models.core import Restaurant
from rasoi.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> ActorContext:
    if not creds:
        raise Unauthorized("Not authenticated")
    try:
        return decode_token(creds.credentials)
    except (jwt.InvalidTokenError, KeyError):
        raise Unauthorized("Invalid token")

def require_role(*roles: str):
    def _dep(ctx: ActorContext = Depends(require_auth)) -> ActorContext:
        if ctx.role not in roles:
            raise Forbidden(f"Requires one of: {', '.join(roles)}")
        return ctx
    return _dep

def public_context(slug: str, db: Session = Depends(get_db)) -> ActorContext:
    """Unauthenticated QR/web ordering acts as a customer of the restaurant named in the URL."""
    r = db.query(Restaurant).filter(Restaurant.slug == slug, Restaurant.is_active.is_(True),
                                    Restaurant.deleted_at.is_(None)).first()
    if not r:
        raise NotFound("Restaurant not found")
    return ActorContext(tenant_id=r.tenant_id, restaurant_id=r.id, role=ROLE_CUSTOMER)
