"""WebSocket server driving the qualification flow."""

import asyncio
import json
import logging
import uuid
from typing import Any, Optional

from websockets.asyncio.server import serve, ServerConnection

from .config.settings import Settings
from .dispatcher import SideEffectDispatcher
from .errors import AnswerOrderError, InvalidTransitionError
from .models import AttributionContext, StepOutcome
from .reporting import ErrorReporter, LoggingErrorReporter
from .repository import Repositories
from .scheduling import AsyncioScheduler
from .session_store import SessionRegistry
from .state_machine import QualificationStateMachine


logger = logging.getLogger(__name__)


class PrequoteFlowServer:
    """WebSocket server: one qualification flow per connection."""

    def __init__(
        self,
        settings: Settings,
        repositories: Repositories,
        error_reporter: Optional[ErrorReporter] = None,
    ):
        self.settings = settings
        self.dispatcher = SideEffectDispatcher(
            lead_repository=repositories.leads,
            call_queue=repositories.calls,
            events=repositories.events,
            error_reporter=error_reporter or LoggingErrorReporter(),
            settings=settings.flow,
        )
        self.scheduler = AsyncioScheduler()
        # Visitor session ID -> stored lead identity; outlives connections.
        self.sessions = SessionRegistry(
            max_sessions=settings.server.max_sessions,
            idle_ttl_seconds=settings.server.session_idle_ttl_seconds,
        )
        self.active_flows: dict[str, QualificationStateMachine] = {}

    def create_flow(self, data: dict[str, Any]) -> QualificationStateMachine:
        """Build a flow for the visitor session named in an ``open`` message."""
        session_id = data.get("session_id") or str(uuid.uuid4())
        store = self.sessions.get_or_create(session_id)
        attribution = AttributionContext(
            cta_source=data.get("cta_source") or "unknown",
            source_page=data.get("source_page") or "",
            session_id=session_id,
            client_id=data.get("client_id"),
            utm=dict(data.get("utm") or {}),
        )
        return QualificationStateMachine(
            dispatcher=self.dispatcher,
            session_store=store,
            scheduler=self.scheduler,
            settings=self.settings.flow,
            attribution=attribution,
        )

    async def handle_action(
        self, flow: QualificationStateMachine, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply one client message to a flow and build the reply."""
        action = data.get("action")
        try:
            match action:
                case "open":
                    opened = await flow.open()
                    outcome = StepOutcome(step=flow.step, accepted=opened)
                case "submit_contact":
                    outcome = await flow.submit_contact(
                        data.get("first_name", ""),
                        data.get("last_name", ""),
                        data.get("email", ""),
                        data.get("phone", ""),
                    )
                case "select_timeline":
                    outcome = flow.select_timeline(data["value"])
                case "select_quote":
                    outcome = flow.select_quote(data["value"])
                case "select_homeowner":
                    outcome = flow.select_homeowner(data["value"])
                case "select_window_scope":
                    outcome = await flow.select_window_scope(data["value"])
                case "select_cta":
                    outcome = await flow.select_cta(data["value"])
                case "back":
                    outcome = StepOutcome(step=flow.step, accepted=flow.back())
                case "close":
                    flow.close()
                    outcome = StepOutcome(step=flow.step)
                case _:
                    return {"error": f"Unknown action: {action}"}
        except KeyError as e:
            return {"error": f"Missing field: {e.args[0]}"}
        except (InvalidTransitionError, AnswerOrderError, ValueError) as e:
            return {"error": str(e)}

        return {
            **flow.snapshot(),
            "accepted": outcome.accepted,
            "errors": outcome.errors,
            "message": outcome.message,
            "redirect": outcome.redirect,
        }

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        connection_id = str(uuid.uuid4())
        flow: Optional[QualificationStateMachine] = None

        logger.info("[CONN %s] Visitor connected", connection_id[:8])

        try:
            async for message in websocket:
                # Log receipt without exposing contact details
                logger.debug("[CONN %s] Received input (%d chars)", connection_id[:8], len(message))

                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    await websocket.send(json.dumps({"error": "Invalid JSON"}))
                    continue
                if not isinstance(data, dict):
                    await websocket.send(json.dumps({"error": "Expected a JSON object"}))
                    continue

                if flow is None:
                    if data.get("action") != "open":
                        await websocket.send(json.dumps({"error": "Flow is not open"}))
                        continue
                    flow = self.create_flow(data)
                    self.active_flows[connection_id] = flow

                reply = await self.handle_action(flow, data)
                await websocket.send(json.dumps(reply))

        except Exception as e:
            logger.exception("[CONN %s] Error: %s", connection_id[:8], e)
        finally:
            if flow is not None:
                flow.close()
            self.active_flows.pop(connection_id, None)
            logger.info("[CONN %s] Disconnected", connection_id[:8])

    def health_status(self) -> dict[str, Any]:
        """Body of the /health reply."""
        return {
            "status": "ok",
            "storage": self.settings.storage.backend,
            "active_flows": len(self.active_flows),
            "sessions": len(self.sessions),
        }

    async def _handle_health_check(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle HTTP health check requests."""
        try:
            request = await reader.read(1024)
            if b"GET /health" in request or b"GET / " in request:
                body = json.dumps(self.health_status()).encode()
                response = (
                    b"HTTP/1.1 200 OK\r\n"
                    b"Content-Type: application/json\r\n"
                    + f"Content-Length: {len(body)}\r\n".encode()
                    + b"\r\n"
                    + body
                )
            else:
                response = (
                    b"HTTP/1.1 404 Not Found\r\n"
                    b"Content-Length: 0\r\n"
                    b"\r\n"
                )
            writer.write(response)
            await writer.drain()
        finally:
            writer.close()
            await writer.wait_closed()

    async def _start_health_server(self) -> asyncio.Server:
        """Start the HTTP health check server."""
        host = self.settings.server.host
        health_port = self.settings.server.health_port
        server = await asyncio.start_server(
            self._handle_health_check, host, health_port
        )
        logger.info("Health check running on http://%s:%s/health", host, health_port)
        return server

    async def start(self) -> None:
        """Start the WebSocket server and health check endpoint."""
        host = self.settings.server.host
        port = self.settings.server.port

        logger.info("Pre-quote flow server on ws://%s:%s (storage=%s)", host, port, self.settings.storage.backend)

        health_server = await self._start_health_server()

        try:
            async with health_server, serve(self.handle_connection, host, port) as ws_server:
                await ws_server.serve_forever()
        finally:
            await self.dispatcher.drain()
