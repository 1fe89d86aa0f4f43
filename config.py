"""
Runtime configuration for the storefront API.

Everything is read from the environment once at import time.
"""
import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CURRENCY = os.getenv("CURRENCY", "USD")


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: float = 0.08
    free_shipping_threshold: float = 50.0
    flat_shipping_fee: float = 5.99
    # compare the free-shipping threshold against subtotal minus discount
    free_shipping_on_discounted: bool = True


def load_policy() -> PricingPolicy:
    return PricingPolicy(
        tax_rate=float(os.getenv("TAX_RATE", "0.08")),
        free_shipping_threshold=float(os.getenv("FREE_SHIPPING_THRESHOLD", "50")),
        flat_shipping_fee=float(os.getenv("FLAT_SHIPPING_FEE", "5.99")),
        free_shipping_on_discounted=_env_bool("FREE_SHIPPING_ON_DISCOUNTED", True),
    )


POLICY = load_policy()
