"""Route group exports."""

from . import health, orders

__all__ = ["health", "orders"]
