import jwt
from datetime import datetime, timedelta, timezone
from rasoi.config import settings
from rasoi.context import ActorContext, ROLE_STAFF

ALGORITHM = "HS256"

def create_token(ctx: ActorContext) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.JWT_EXP_MIN)
    payload = {
        "sub": ctx.actor_id, "tid": ctx.tenant_id, "rid": ctx.restaurant_id, "role": ctx.role,
        "iss": settings.JWT_ISS, "iat": int(now.timestamp()), "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.APP_SECRET, algorithm=ALGORITHM)

def decode_token(token: str) -> ActorContext:
    """Raises jwt.InvalidTokenError (or KeyError for missing claims) on a bad token."""
    data = jwt.decode(token, settings.APP_SECRET, algorithms=[ALGORITHM], issuer=settings.JWT_ISS,
                      options={"verify_aud": False})
    return ActorContext(
        tenant_id=data["tid"],
        restaurant_id=data["rid"],
        actor_id=data.get("sub"),
        role=data.get("role") or ROLE_STAFF,
    )
