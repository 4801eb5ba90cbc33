"""FastAPI application factory"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from airtime_advance.api.dependencies import get_request_id
from airtime_advance.api.middleware import MetricsMiddleware, RequestIDMiddleware
from airtime_advance.api.v1 import calls, ledger, offers, subscribers
from airtime_advance.bootstrap import build_orchestrator
from airtime_advance.config import settings
from airtime_advance.domain.exceptions import DomainException
from airtime_advance.infrastructure.observability.logging import setup_logging
from airtime_advance.infrastructure.scheduler import AsyncioScheduler
from airtime_advance.services.orchestrator import Orchestrator

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Without an orchestrator, one is built at startup on the running event
    loop's clock.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = build_orchestrator(settings, AsyncioScheduler(asyncio.get_running_loop()))
        yield
        app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Airtime Advance",
        description="Low-balance airtime micro-advances: offers, consent, disbursal and auto-repayment",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        logger.error(f"Unhandled domain error: {exc}", extra={"request_id": get_request_id(request)})
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.websocket("/ws")
    async def broadcast_stream(websocket: WebSocket):
        """Relay every broadcast envelope verbatim as JSON"""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        # Listener is registered before the handshake completes
        unsubscribe = websocket.app.state.orchestrator.subscribe(
            lambda event: loop.call_soon_threadsafe(queue.put_nowait, event.envelope())
        )

        async def relay():
            while True:
                await websocket.send_json(await queue.get())

        sender = None
        try:
            await websocket.accept()
            sender = asyncio.create_task(relay())
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            unsubscribe()
            if sender is not None:
                sender.cancel()

    # Register API routers
    app.include_router(subscribers.router, prefix="/v1", tags=["subscribers"])
    app.include_router(calls.router, prefix="/v1", tags=["simulation"])
    app.include_router(offers.router, prefix="/v1", tags=["offers"])
    app.include_router(ledger.router, prefix="/v1", tags=["ledger"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "airtime_advance.api.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
