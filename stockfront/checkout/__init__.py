from .machine import CheckoutService, Outcome, decide
from .delivery import DeliveryEngine, DeliveryResult
from .reservations import Reservation, ReservationManager

__all__ = [
    "CheckoutService", "Outcome", "decide",
    "DeliveryEngine", "DeliveryResult",
    "Reservation", "ReservationManager",
]
