"""Repository factory."""

from typing import NamedTuple

from ..config.settings import Settings
from .base import CallQueueRepository, EventRepository, LeadRepository
from .local import LocalCallQueueRepository, LocalEventRepository, LocalLeadRepository
from .supabase import (
    SupabaseCallQueueRepository,
    SupabaseClientManager,
    SupabaseEventRepository,
    SupabaseLeadRepository,
)


class Repositories(NamedTuple):
    leads: LeadRepository
    calls: CallQueueRepository
    events: EventRepository


def create_repositories(settings: Settings) -> Repositories:
    """Create repositories for the configured storage backend.

    Args:
        settings: Application settings

    Returns:
        Repositories(leads, calls, events)

    Raises:
        ValueError: If the backend is unknown, or Supabase is selected but not configured
    """
    backend = settings.storage.backend
    if backend == "local":
        data_path = settings.storage.data_path
        return Repositories(
            LocalLeadRepository(data_path),
            LocalCallQueueRepository(data_path),
            LocalEventRepository(data_path),
        )

    if backend == "supabase":
        client_manager = SupabaseClientManager(settings.supabase)
        return Repositories(
            SupabaseLeadRepository(client_manager),
            SupabaseCallQueueRepository(client_manager),
            SupabaseEventRepository(client_manager),
        )

    raise ValueError(f"Unknown storage backend: {backend}")
