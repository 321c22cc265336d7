from tutorbook.core.database import Base
from .reservations import (
    Reservation,
    ReservationStatus,
    ReservationState,
    compute_composite_state,
)

__all__ = [
    "Base",
    "Reservation",
    "ReservationStatus",
    "ReservationState",
    "compute_composite_state",
]
