"""SQLAlchemy ORM models."""

from medreminder.models.reminder import (
    AdherenceRecord,
    AdherenceStatus,
    Channel,
    MedicineReminder,
    Occurrence,
    WithFood,
)
from medreminder.models.user import User

__all__ = [
    "AdherenceRecord",
    "AdherenceStatus",
    "Channel",
    "MedicineReminder",
    "Occurrence",
    "User",
    "WithFood",
]
