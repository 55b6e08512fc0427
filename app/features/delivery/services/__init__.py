"""
Delivery services: trigger engine and message composition.
"""

from app.features.delivery.services.delivery_engine import (
    DeliveryEngine,
    DeliveryReport,
    delivery_engine,
    is_eligible,
)

__all__ = ["DeliveryEngine", "DeliveryReport", "delivery_engine", "is_eligible"]
