"""Local JSON file repository implementation."""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import aiofiles
import aiofiles.os

from ..errors import LeadCreationError, QualificationPersistenceError
from ..models import CallRequest, EnqueueResult, LeadSubmission, QualificationUpdate
from .base import (
    ACTIVE_CALL_STATUSES,
    CALL_DELAY,
    ENQUEUE_IDEMPOTENCY_WINDOW,
    CallQueueRepository,
    EventRepository,
    LeadRepository,
    hash_phone,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

# One lock per resolved path, shared by every JsonFile pointing at it.
_FILE_LOCKS: dict[Path, asyncio.Lock] = {}


def _lock_for(path: Path) -> asyncio.Lock:
    lock = _FILE_LOCKS.get(path)
    if lock is None:
        lock = _FILE_LOCKS[path] = asyncio.Lock()
    return lock


class JsonFile:
    """A JSON array stored in one file.

    Writes go through ``update()``, which holds the path's lock across the
    read-modify-write and swaps the new content in with ``os.replace``.
    """

    def __init__(self, data_path: str, filename: str):
        self.file_path = (Path(data_path) / filename).resolve()

    @property
    def lock(self) -> asyncio.Lock:
        return _lock_for(self.file_path)

    async def read_all(self) -> list[dict]:
        """Read all rows from file."""
        if not self.file_path.exists():
            return []
        async with aiofiles.open(self.file_path, "r") as f:
            content = await f.read()
            return json.loads(content) if content else []

    async def update(self, mutate: Callable[[list[dict]], T]) -> T:
        """Apply ``mutate`` to the rows and persist them atomically.

        ``mutate`` edits the list in place and its return value is passed
        back. If it raises, nothing is written.
        """
        async with self.lock:
            data = await self.read_all()
            result = mutate(data)
            await self._write_all(data)
            return result

    async def _write_all(self, data: list[dict]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_name(f".{self.file_path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(data, indent=2, default=str))
        await aiofiles.os.replace(tmp_path, self.file_path)


class LocalLeadRepository(LeadRepository):
    """JSON file-based lead repository."""

    def __init__(self, data_path: str):
        self.leads = JsonFile(data_path, "leads.json")

    async def create_lead(self, submission: LeadSubmission) -> str:
        email = submission.email.strip().lower()
        now = datetime.now(timezone.utc).isoformat()
        fields = {
            "first_name": submission.first_name,
            "last_name": submission.last_name,
            "phone": submission.phone,
            "source_tool": submission.source_tool,
            "flow_version": submission.flow_version,
            "cta_source": submission.attribution.cta_source,
            "source_page": submission.attribution.source_page,
            "updated_at": now,
        }

        def upsert(data: list[dict]) -> str:
            for item in data:
                if item["email"] == email:
                    item.update(fields)
                    return item["id"]
            lead_id = str(uuid.uuid4())
            data.append({"id": lead_id, "email": email, "created_at": now, **fields})
            return lead_id

        try:
            lead_id = await self.leads.update(upsert)
        except (OSError, ValueError) as e:
            raise LeadCreationError(f"Could not save lead: {e}") from e
        logger.info("[LEADS] Saved lead %s (local)", lead_id)
        return lead_id

    async def update_qualification(self, update: QualificationUpdate) -> None:
        def apply(data: list[dict]) -> None:
            for item in data:
                if item["id"] == update.lead_id:
                    item.update({
                        "timeline": update.timeline.value,
                        "has_quote": update.has_quote.value,
                        "homeowner": update.homeowner,
                        "window_scope": update.window_scope.value,
                        "lead_score": update.score,
                        "lead_segment": update.segment.value,
                        "qualification_completed_at": datetime.now(timezone.utc).isoformat(),
                    })
                    return
            raise QualificationPersistenceError(
                f"Lead {update.lead_id} not found", lead_id=update.lead_id
            )

        await self.leads.update(apply)

    async def get_by_id(self, lead_id: str) -> Optional[dict]:
        """Get a stored lead row by ID."""
        for item in await self.leads.read_all():
            if item["id"] == lead_id:
                return item
        return None


class LocalCallQueueRepository(CallQueueRepository):
    """JSON file-based call queue. Every source tool is treated as enabled."""

    def __init__(self, data_path: str):
        self.calls = JsonFile(data_path, "pending_calls.json")

    async def enqueue(self, request: CallRequest) -> EnqueueResult:
        now = datetime.now(timezone.utc)
        cutoff = now - ENQUEUE_IDEMPOTENCY_WINDOW

        def enqueue_once(data: list[dict]) -> EnqueueResult:
            for item in reversed(data):
                if (
                    item["lead_id"] == request.lead_id
                    and item["source_tool"] == request.source_tool
                    and item["status"] in ACTIVE_CALL_STATUSES
                    and datetime.fromisoformat(item["created_at"]) >= cutoff
                ):
                    return EnqueueResult(
                        enqueued=False,
                        call_request_id=item["call_request_id"],
                        status=item["status"],
                        reason="idempotent_existing_recent",
                    )

            scheduled_for = now + CALL_DELAY
            call_request_id = str(uuid.uuid4())
            data.append({
                "call_request_id": call_request_id,
                "lead_id": request.lead_id,
                "source_tool": request.source_tool,
                "status": "pending",
                "scheduled_for": scheduled_for.isoformat(),
                "attempt_count": 0,
                "phone_e164": request.phone_e164,
                "phone_hash": hash_phone(request.phone_e164),
                "payload": request.payload,
                "created_at": now.isoformat(),
            })
            return EnqueueResult(
                enqueued=True,
                call_request_id=call_request_id,
                status="pending",
                scheduled_for=scheduled_for,
            )

        result = await self.calls.update(enqueue_once)
        if result.enqueued:
            logger.info("[CALLS] Enqueued %s for lead %s (local)", result.call_request_id, request.lead_id)
        return result


class LocalEventRepository(EventRepository):
    """Appends events to a JSON file."""

    def __init__(self, data_path: str):
        self.events = JsonFile(data_path, "events.json")

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        row = {
            "event_name": event_name,
            "event_time": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        await self.events.update(lambda data: data.append(row))
