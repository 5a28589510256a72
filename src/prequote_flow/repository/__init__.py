"""Repository layer for data access."""

from .base import CallQueueRepository, EventRepository, LeadRepository
from .factory import Repositories, create_repositories

__all__ = [
    "LeadRepository",
    "CallQueueRepository",
    "EventRepository",
    "Repositories",
    "create_repositories",
]
