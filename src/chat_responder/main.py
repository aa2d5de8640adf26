"""
Chat Responder - AI response service for the mobile chat client.

Brokers chat messages between the client, the hosted relational store
and the completion API.

Endpoints:
    - POST /generate_ai_response - Generate and persist the AI reply
    - OPTIONS /generate_ai_response - CORS preflight

    Health:
        - GET /health - Health check
        - GET /health/live - Liveness
        - GET /health/ready - Readiness (database connectivity)

Run with:
    uvicorn chat_responder.main:app
"""
import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_responder import __version__
from chat_responder.config import Settings, get_settings
from chat_responder.db.engine import (
    check_db_health,
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from chat_responder.errors import CORS_HEADERS, ResponderError, error_response_for, internal_error
from chat_responder.routers import generate
from chat_responder.services.completion_client import CompletionClient, RetryPolicy, Sleep
from chat_responder.services.http_client import close_client, create_client
from chat_responder.services.orchestrator import ResponseOrchestrator
from chat_responder.services.store import ConversationStore


# ============================================================================
# Logging Configuration
# ============================================================================

def configure_logging(settings: Settings) -> None:
    """
    Configure structured logging with structlog.

    JSON output for production, pretty console output when
    LOG_FORMAT=console.
    """
    log_level = settings.log_level.upper()
    log_format = settings.log_format.lower()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level, logging.INFO),
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "console":
        renderers: list[structlog.types.Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("chat-responder")


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Sleep = asyncio.sleep,
) -> FastAPI:
    """
    Build the FastAPI application.

    The database engine, HTTP client, store, completion client and
    orchestrator are created in the lifespan from *settings* and kept on
    ``app.state``. If required secrets are missing the app still starts;
    every generate request then fails with a configuration error before
    touching the network.

    Args:
        settings: Service settings (defaults to the environment)
        http_transport: Optional transport for the completion API client
        sleep: Awaitable used for retry backoff

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("chat_responder.startup")
        app.state.engine = None
        app.state.orchestrator = None

        missing = settings.missing_secrets()
        if missing:
            logger.error("chat_responder.config.missing", missing=missing)
            yield
            logger.info("chat_responder.shutdown")
            return

        engine = create_engine(settings)
        if settings.db_create_tables:
            try:
                await init_db(engine)
            except Exception as e:
                logger.error("chat_responder.database.error", error=str(e))
                await close_db(engine)
                raise

        http = create_client(settings, transport=http_transport)
        completion = CompletionClient(
            http,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            retry_policy=RetryPolicy.from_settings(settings),
            sleep=sleep,
        )
        store = ConversationStore(create_session_factory(engine))

        app.state.engine = engine
        app.state.orchestrator = ResponseOrchestrator(store, completion, settings)
        logger.info("chat_responder.ready")

        yield

        logger.info("chat_responder.shutdown")
        await close_client(http)
        await close_db(engine)
        logger.info("chat_responder.shutdown.complete")

    app = FastAPI(
        title="Chat Responder",
        description="AI response service for the mobile chat client",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = None
    app.state.orchestrator = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[h.strip() for h in CORS_HEADERS["Access-Control-Allow-Headers"].split(",")],
        expose_headers=["X-Response-Time"],
    )

    @app.exception_handler(ResponderError)
    async def responder_error_handler(request: Request, exc: ResponderError) -> JSONResponse:
        logger.warning(
            "chat_responder.error",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.message,
        )
        return error_response_for(exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a generic 500 without internal details."""
        logger.exception(
            "chat_responder.unhandled_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return internal_error()

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", "-")
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        logger.info("chat_responder.request.start")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "chat_responder.request.complete",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response

    app.include_router(generate.router, tags=["generate"])

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "service": "chat-responder",
            "version": __version__,
        }

    @app.get("/health/live")
    async def liveness_check():
        return {"status": "alive"}

    @app.get("/health/ready")
    async def readiness_check(request: Request):
        """
        Readiness check. 503 if secrets are missing or the database
        does not answer ``SELECT 1``.
        """
        engine = request.app.state.engine
        if engine is None:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "checks": {"configuration": "missing"}},
            )

        if not await check_db_health(engine):
            logger.warning("readiness_check.database_unhealthy")
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "checks": {"database": "unreachable"}},
            )

        return {"status": "ready", "checks": {"database": "ok"}}

    return app


app = create_app()
