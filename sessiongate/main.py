#!/usr/bin/env python3
"""
SessionGate - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules (storage, credential store, transport, registry)
3. Restores persisted sessions and runs the API server

All business logic is in the modules, following black box principles.
"""

import asyncio
import json
import logging
import logging.config as log_config
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Path, Request, Response
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from sessiongate import __version__
from sessiongate.logging_config import get_logging_config

# Import modules through their black box interfaces
from sessiongate.modules.api import (
    SESSION_ID_PATTERN,
    ChallengeResponse,
    ChatListResponse,
    ChatResponse,
    CreateSessionRequest,
    SendFileRequest,
    SendImageRequest,
    SendResponse,
    SendTextRequest,
    SessionListResponse,
    SessionRequest,
    SessionResponse,
    file_payload,
    image_payload,
    text_payload,
)
from sessiongate.modules.auth import (
    AuthStateBridge,
    CredentialStore,
    InMemoryCredentialStore,
    RedisCredentialStore,
)
from sessiongate.modules.config import ConfigModule, get_config
from sessiongate.modules.registry import SessionRegistry
from sessiongate.modules.session import (
    ChallengeNotAvailable,
    PersistenceFailure,
    SessionEvents,
    SessionNotFound,
    SessionNotReady,
)
from sessiongate.modules.storage import StorageModule
from sessiongate.modules.supervisor import BackoffPolicy
from sessiongate.modules.transport import Transport, TransportError, load_transport

# Get configuration
config = get_config()

# Configure logging with health check suppression
log_config.dictConfig(get_logging_config(config.get("log_level")))
logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15


def create_app(
    transport: Optional[Transport] = None,
    store: Optional[CredentialStore] = None,
    app_config: Optional[ConfigModule] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        transport: Transport to use (defaults to TRANSPORT_FACTORY)
        store: Credential store to use (defaults to CREDENTIAL_STORE)
        app_config: Configuration (defaults to the environment singleton)
    """
    cfg = app_config or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle - initialize and cleanup resources.
        """
        logger.info("Starting SessionGate API...")

        session_transport = transport
        if session_transport is None:
            factory_path = cfg.get("transport_factory")
            if not factory_path:
                logger.error("TRANSPORT_FACTORY is not set - this is a critical failure")
                raise RuntimeError("Transport initialization failed")
            session_transport = load_transport(factory_path)

        storage: Optional[StorageModule] = None
        credential_store = store
        if credential_store is None:
            if cfg.get("credential_store") == "redis":
                storage = StorageModule(cfg.redis_url(), password=cfg.get("redis_password"))
                credential_store = RedisCredentialStore(await storage.connect())
            else:
                logger.warning("Using in-memory credential store - credentials will not survive a restart")
                credential_store = InMemoryCredentialStore()

        events = SessionEvents(queue_size=cfg.get("event_queue_size", 100))
        registry = SessionRegistry(
            bridge=AuthStateBridge(credential_store),
            transport=session_transport,
            policy=BackoffPolicy(
                base_ms=cfg.get("restart_base_ms"),
                cap_ms=cfg.get("restart_cap_ms"),
                max_attempts=cfg.get("restart_max_attempts"),
            ),
            events=events,
            retriable_codes=cfg.get("retriable_close_codes"),
            print_qr_console=cfg.get("print_qr_console", False),
        )

        app.state.storage = storage
        app.state.events = events
        app.state.registry = registry

        if cfg.get("restore_on_startup", True):
            await registry.restore()

        logger.info("SessionGate API started successfully")

        yield

        logger.info("Shutting down SessionGate API...")
        await registry.shutdown()
        app.state.registry = None
        if storage:
            await storage.disconnect()
        logger.info("SessionGate API shutdown complete")

    app = FastAPI(
        title="SessionGate API",
        description="SessionGate - Session lifecycle supervisor for messaging connections",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = None
    app.state.storage = None
    app.state.events = None

    _register_routes(app)
    _register_error_handlers(app)
    return app


# Dependency injection helpers


def get_registry(request: Request) -> SessionRegistry:
    """Registry of the running application."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(503, "Service not initialized")
    return registry


def _register_routes(app: FastAPI) -> None:
    # Session Endpoints

    @app.get("/sessions", response_model=SessionListResponse)
    async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
        """List all sessions known to this process."""
        sessions = [SessionResponse.from_session(s) for s in registry.list()]
        return SessionListResponse(sessions=sessions, count=len(sessions))

    @app.post("/sessions/add", response_model=SessionResponse)
    async def create_session(
        request: CreateSessionRequest, registry: SessionRegistry = Depends(get_registry)
    ):
        """
        Create a session, or return the live one with the same id.

        Returns:
            200: Session summary (state connecting while the transport opens)
            503: Credential store unavailable
        """
        session = await registry.create(request.session)
        return SessionResponse.from_session(session)

    @app.post("/sessions/getqr", response_model=ChallengeResponse)
    async def get_challenge(request: SessionRequest, registry: SessionRegistry = Depends(get_registry)):
        """
        Current login challenge of a session.

        Returns:
            200: Challenge string and PNG URL
            404: Session not found or no challenge pending
        """
        challenge = registry.challenge(request.session)
        return ChallengeResponse(
            session=request.session,
            challenge=challenge,
            qr_url=f"/sessions/{request.session}/qr",
        )

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
        """
        Returns:
            200: Session summary
            404: Session not found
        """
        return SessionResponse.from_session(registry.get(session_id))

    @app.get("/sessions/{session_id}/qr")
    async def get_challenge_image(session_id: str, registry: SessionRegistry = Depends(get_registry)):
        """PNG rendering of the pending challenge."""
        png = registry.qr.image(session_id)
        return Response(
            content=png,
            media_type="image/png",
            headers={"Cache-Control": "no-store"},
        )

    @app.post("/sessions/{session_id}/reset", response_model=SessionResponse)
    async def reset_session(
        session_id: str = Path(..., min_length=1, max_length=128, pattern=SESSION_ID_PATTERN),
        registry: SessionRegistry = Depends(get_registry),
    ):
        """
        Wipe credentials and start the session from scratch.

        Returns:
            200: Fresh session summary
            422: Invalid session id
            503: Credential store unavailable
        """
        session = await registry.reset(session_id)
        return SessionResponse.from_session(session)

    @app.get("/sessions/{session_id}/events")
    async def session_events(
        session_id: str, request: Request, registry: SessionRegistry = Depends(get_registry)
    ):
        """
        SSE feed of a session's state, challenge and message events.

        Returns:
            SSE stream of events
            404: Session not found
        """
        current = registry.get(session_id)
        events: SessionEvents = request.app.state.events

        async def event_generator() -> AsyncGenerator:
            """Generate SSE events from the session event hub."""
            with events.subscribe(session_id) as queue:
                logger.info(f"Observer subscribed to {session_id}")
                yield {"event": "snapshot", "data": json.dumps(current.summary())}

                try:
                    while True:
                        if await request.is_disconnected():
                            break
                        try:
                            event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                        except asyncio.TimeoutError:
                            yield {
                                "event": "keepalive",
                                "data": json.dumps({"timestamp": datetime.now(UTC).isoformat()}),
                            }
                            continue
                        yield {"event": event["type"], "data": json.dumps(event, default=str)}
                except asyncio.CancelledError:
                    logger.info(f"Observer of {session_id} disconnecting")
                    raise
                finally:
                    logger.info(f"Observer unsubscribed from {session_id}")

        return EventSourceResponse(event_generator())

    # Messaging Endpoints

    @app.post("/messages/sendtext", response_model=SendResponse)
    async def send_text(request: SendTextRequest, registry: SessionRegistry = Depends(get_registry)):
        """
        Returns:
            200: Transport result
            404: Session not found
            503: Session not connected
            502: Transport rejected the message
        """
        result = await registry.send(request.session, request.to, text_payload(request))
        return SendResponse(session=request.session, to=request.to, result=result)

    @app.post("/messages/sendimage", response_model=SendResponse)
    async def send_image(request: SendImageRequest, registry: SessionRegistry = Depends(get_registry)):
        """Send an image (URL or base64 data: URI)."""
        result = await registry.send(request.session, request.to, image_payload(request))
        return SendResponse(session=request.session, to=request.to, result=result)

    @app.post("/messages/sendfile", response_model=SendResponse)
    async def send_file(request: SendFileRequest, registry: SessionRegistry = Depends(get_registry)):
        """Send a document (URL or base64 data: URI)."""
        result = await registry.send(request.session, request.to, file_payload(request))
        return SendResponse(session=request.session, to=request.to, result=result)

    @app.post("/chats", response_model=ChatListResponse)
    async def list_chats(request: SessionRequest, registry: SessionRegistry = Depends(get_registry)):
        """Chats observed on the session's incoming message stream."""
        chats = [ChatResponse(**c.to_dict()) for c in registry.chats(request.session)]
        return ChatListResponse(session=request.session, chats=chats)

    # Health/Monitoring Endpoints

    @app.get("/healthz")
    async def healthz():
        """
        Minimal health check endpoint for Kubernetes readiness/liveness probes.

        Returns:
            200: Service is running
        """
        return {"status": "ok"}

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check with store connectivity and session counts.

        Returns:
            200: Service healthy
            503: Service unhealthy
        """
        registry: Optional[SessionRegistry] = request.app.state.registry
        storage: Optional[StorageModule] = request.app.state.storage

        if storage is not None:
            store_status = "connected" if await storage.ping() else "disconnected"
        else:
            store_status = "memory"

        body = {
            "status": "healthy",
            "store": store_status,
            "modules": "initialized" if registry else "not initialized",
            "sessions": registry.count_by_state() if registry else {},
            "version": __version__,
        }
        if registry is None or store_status == "disconnected":
            body["status"] = "unhealthy"
            return JSONResponse(status_code=503, content=body)
        return body


# Error handlers


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SessionNotFound)
    async def session_not_found_handler(request, exc):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ChallengeNotAvailable)
    async def challenge_not_available_handler(request, exc):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(SessionNotReady)
    async def session_not_ready_handler(request, exc):
        """Handle sends on sessions without a live connection."""
        return JSONResponse(
            status_code=503,
            content={"error": str(exc), "state": exc.state},
        )

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(request, exc):
        """Handle credential store errors."""
        logger.error(f"Credential store error: {exc}")
        return JSONResponse(status_code=503, content={"error": "Credential store unavailable"})

    @app.exception_handler(TransportError)
    async def transport_error_handler(request, exc):
        logger.error(f"Transport error: {exc}")
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def validation_error_handler(request, exc):
        """Handle validation errors."""
        logger.error(f"Validation error: {exc}")
        return JSONResponse(status_code=400, content={"error": str(exc)})


# Create FastAPI application
app = create_app()


def run() -> None:
    """Run the API server."""
    # Use dict config for logging, not file path
    uvicorn.run(
        "sessiongate.main:app",
        host=config.get("host"),
        port=config.get("port"),
        log_level=config.get("log_level").lower(),
        reload=config.get("debug"),
        log_config=get_logging_config(config.get("log_level")),
    )


if __name__ == "__main__":
    run()
