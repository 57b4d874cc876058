from dataclasses import dataclass

ROLE_OWNER = "OWNER"
ROLE_MANAGER = "MANAGER"
ROLE_STAFF = "STAFF"
ROLE_CUSTOMER = "CUSTOMER"        # public QR / web ordering
ROLE_INTEGRATION = "INTEGRATION"  # delivery platform webhooks

MANAGEMENT_ROLES = (ROLE_OWNER, ROLE_MANAGER)


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, and on which tenant/restaurant. Passed into every service call."""
    tenant_id: str
    restaurant_id: str
    actor_id: str | None = None
    role: str = ROLE_STAFF
