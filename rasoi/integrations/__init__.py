from rasoi.errors import NotFound
from rasoi.integrations.base import NormalizedItem, NormalizedOrder, PayloadError, PlatformAdapter
from rasoi.integrations.swiggy import SwiggyAdapter
from rasoi.integrations.zomato import ZomatoAdapter
from rasoi.models.core import Platform

# one adapter per platform; a new platform only needs a new entry here
ADAPTERS: dict[Platform, PlatformAdapter] = {
    Platform.ZOMATO: ZomatoAdapter(),
    Platform.SWIGGY: SwiggyAdapter(),
}


def get_adapter(platform: str | Platform) -> PlatformAdapter:
    try:
        key = platform if isinstance(platform, Platform) else Platform(str(platform).upper())
        return ADAPTERS[key]
    except (KeyError, ValueError):
        raise NotFound(f"Unknown platform: {platform}")


__all__ = [
    "ADAPTERS", "get_adapter",
    "PlatformAdapter", "NormalizedOrder", "NormalizedItem", "PayloadError",
    "ZomatoAdapter", "SwiggyAdapter",
]
