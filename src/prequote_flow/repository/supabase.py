"""Supabase repository implementation."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import create_client, Client

from ..config.settings import SupabaseSettings
from ..errors import LeadCreationError, QualificationPersistenceError, SideEffectError
from ..models import (
    CallRequest,
    EnqueueResult,
    LeadSubmission,
    QualificationUpdate,
)
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

QUALIFIED_EVENT_NAME = "prequote_v2_qualified"
DEFAULT_FIRST_MESSAGE = "Hi, this is Window Man. Quick question about your window project."
UNIQUE_VIOLATION = "23505"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SupabaseClientManager:
    """Creates the Supabase client on first use and shares it across repositories."""

    def __init__(self, settings: SupabaseSettings):
        if not settings.is_configured:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment")
        self.settings = settings
        self._client: Optional[Client] = None

    def get_client(self) -> Client:
        if self._client is None:
            logger.info("[SUPABASE] Connecting to %s", self.settings.url)
            self._client = create_client(self.settings.url, self.settings.key)
        return self._client


class SupabaseLeadRepository(LeadRepository):
    """Supabase-backed lead repository (``leads`` plus the ``wm_leads`` CRM mirror)."""

    def __init__(self, client_manager: SupabaseClientManager):
        self.client_manager = client_manager

    async def create_lead(self, submission: LeadSubmission) -> str:
        """Create a lead, or refresh the existing one with the same email."""
        client = self.client_manager.get_client()
        email = submission.email.strip().lower()
        attribution = submission.attribution
        session_data = {
            "clientId": attribution.client_id,
            "client_id": attribution.client_id,
            "ctaSource": attribution.cta_source,
            "flowVersion": submission.flow_version,
            "sourcePage": attribution.source_page,
            "sessionId": attribution.session_id,
            "attribution": dict(attribution.utm),
        }
        row = {
            "name": f"{submission.first_name} {submission.last_name}".strip(),
            "first_name": submission.first_name,
            "last_name": submission.last_name,
            "phone": submission.phone or None,
            "source_tool": submission.source_tool,
            "session_data": session_data,
        }

        try:
            existing = (
                client.table("leads")
                .select("id")
                .eq("email", email)
                .limit(1)
                .execute()
            )
            if existing.data:
                lead_id = existing.data[0]["id"]
                client.table("leads").update({
                    **row,
                    "updated_at": _now().isoformat(),
                }).eq("id", lead_id).execute()
                logger.info("[LEADS] Updated existing lead %s", lead_id)
                return lead_id

            response = client.table("leads").insert({"email": email, **row}).execute()
        except Exception as e:
            raise LeadCreationError(f"Database error while saving lead: {e}") from e

        if not response.data:
            raise LeadCreationError("Lead insert returned no row")
        lead_id = response.data[0]["id"]
        logger.info("[LEADS] Created new lead %s", lead_id)
        return lead_id

    async def update_qualification(self, update: QualificationUpdate) -> None:
        """Write qualification to ``leads``, mirror to ``wm_leads``, log the event.

        Only the ``leads`` write is fatal; the CRM sync and event ledger are
        logged and skipped on failure.
        """
        client = self.client_manager.get_client()
        completed_at = _now().isoformat()
        fields = {
            "timeline": update.timeline.value,
            "has_quote": update.has_quote.value,
            "homeowner": update.homeowner,
            "window_scope": update.window_scope.value,
            "lead_score": update.score,
            "lead_segment": update.segment.value,
            "qualification_completed_at": completed_at,
            "updated_at": completed_at,
        }

        try:
            client.table("leads").update(fields).eq("id", update.lead_id).execute()
        except Exception as e:
            raise QualificationPersistenceError(
                f"leads update failed: {e}", lead_id=update.lead_id
            ) from e

        try:
            client.table("wm_leads").update(fields).eq("lead_id", update.lead_id).execute()
        except Exception as e:
            logger.error("[LEADS] wm_leads sync failed for %s: %s", update.lead_id, e)

        try:
            self._record_qualified_event(client, update, completed_at)
        except Exception as e:
            if getattr(e, "code", None) != UNIQUE_VIOLATION:
                logger.error("[LEADS] wm_event_log write failed for %s: %s", update.lead_id, e)

        logger.info(
            "[LEADS] Qualified %s: score=%s segment=%s",
            update.lead_id, update.score, update.segment.value,
        )

    def _record_qualified_event(
        self, client: Client, update: QualificationUpdate, completed_at: str
    ) -> None:
        """Insert the qualified event unless one already exists for the lead."""
        existing = (
            client.table("wm_event_log")
            .select("event_id")
            .eq("lead_id", update.lead_id)
            .eq("event_name", QUALIFIED_EVENT_NAME)
            .limit(1)
            .execute()
        )
        if existing.data:
            return

        client.table("wm_event_log").insert({
            "event_id": str(uuid.uuid4()),
            "event_name": QUALIFIED_EVENT_NAME,
            "event_type": "qualification",
            "event_time": completed_at,
            "lead_id": update.lead_id,
            "session_id": update.session_id,
            "client_id": update.client_id,
            "external_id": update.lead_id,
            "source_tool": update.source_tool or "prequote-v2",
            "source_system": "update-lead-qualification",
            "ingested_by": "update-lead-qualification",
            "funnel_stage": "qualified",
            "metadata": {
                "timeline": update.timeline.value,
                "has_quote": update.has_quote.value,
                "homeowner": update.homeowner,
                "window_scope": update.window_scope.value,
                "lead_score": update.score,
                "lead_segment": update.segment.value,
            },
        }).execute()


class SupabaseCallQueueRepository(CallQueueRepository):
    """Supabase-backed call queue (``pending_calls`` routed by ``call_agents``)."""

    def __init__(self, client_manager: SupabaseClientManager):
        self.client_manager = client_manager

    async def enqueue(self, request: CallRequest) -> EnqueueResult:
        """Queue a call unless one is already active for this lead and source."""
        client = self.client_manager.get_client()
        now = _now()

        recent = (
            client.table("pending_calls")
            .select("call_request_id, status, created_at")
            .eq("lead_id", request.lead_id)
            .eq("source_tool", request.source_tool)
            .in_("status", ACTIVE_CALL_STATUSES)
            .gte("created_at", (now - ENQUEUE_IDEMPOTENCY_WINDOW).isoformat())
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if recent.data:
            return EnqueueResult(
                enqueued=False,
                call_request_id=recent.data[0]["call_request_id"],
                status=recent.data[0]["status"],
                reason="idempotent_existing_recent",
            )

        agent = (
            client.table("call_agents")
            .select("agent_id, enabled, first_message_template")
            .eq("source_tool", request.source_tool)
            .limit(1)
            .execute()
        )
        if not agent.data or not agent.data[0].get("agent_id"):
            raise SideEffectError(f"No call_agents row for source_tool={request.source_tool}")
        agent_row = agent.data[0]

        if agent_row.get("enabled") is False:
            return EnqueueResult(enqueued=False, reason="agent_disabled")

        call_request_id = str(uuid.uuid4())
        scheduled_for = now + CALL_DELAY
        client.table("pending_calls").insert({
            "call_request_id": call_request_id,
            "lead_id": request.lead_id,
            "source_tool": request.source_tool,
            "status": "pending",
            "scheduled_for": scheduled_for.isoformat(),
            "next_attempt_at": scheduled_for.isoformat(),
            "attempt_count": 0,
            "phone_e164": request.phone_e164,
            "phone_hash": hash_phone(request.phone_e164),
            "agent_id": agent_row["agent_id"],
            "first_message": agent_row.get("first_message_template") or DEFAULT_FIRST_MESSAGE,
            "payload": request.payload or {},
            "last_error": None,
            "updated_at": now.isoformat(),
        }).execute()

        logger.info(
            "[CALLS] Enqueued %s for lead %s via %s",
            call_request_id, request.lead_id, request.source_tool,
        )
        return EnqueueResult(
            enqueued=True,
            call_request_id=call_request_id,
            status="pending",
            scheduled_for=scheduled_for,
        )


class SupabaseEventRepository(EventRepository):
    """Writes events to the ``wm_event_log`` ledger."""

    def __init__(self, client_manager: SupabaseClientManager):
        self.client_manager = client_manager

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        client = self.client_manager.get_client()
        client.table("wm_event_log").insert({
            "event_id": payload.get("event_id") or str(uuid.uuid4()),
            "event_name": event_name,
            "event_type": payload.get("meta", {}).get("category", "internal"),
            "event_time": _now().isoformat(),
            "lead_id": payload.get("lead_id"),
            "source_system": "prequote-flow",
            "metadata": payload,
        }).execute()
