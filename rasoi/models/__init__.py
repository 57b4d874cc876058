# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    OrderStatus, OrderType, OrderSource, PaymentMethod, PaymentStatus,
    ItemStatus, TableStatus, Platform, WebhookStatus,

    # Identity
    Tenant, Restaurant,

    # Dining & catalog
    Hall, RestaurantTable, Product,

    # Customers
    Customer,

    # Orders & audit
    Order, OrderItem, AuditLog,

    # Delivery platforms
    IntegrationConfig, IntegrationMenuMap, IntegrationWebhookLog,
)

__all__ = [
    # Enums
    "OrderStatus", "OrderType", "OrderSource", "PaymentMethod", "PaymentStatus",
    "ItemStatus", "TableStatus", "Platform", "WebhookStatus",

    # Identity
    "Tenant", "Restaurant",

    # Dining & catalog
    "Hall", "RestaurantTable", "Product",

    # Customers
    "Customer",

    # Orders & audit
    "Order", "OrderItem", "AuditLog",

    # Delivery platforms
    "IntegrationConfig", "IntegrationMenuMap", "IntegrationWebhookLog",
]
