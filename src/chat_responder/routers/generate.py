"""
AI response endpoint called by the mobile client.

    OPTIONS /generate_ai_response  -> "ok" (CORS preflight)
    POST    /generate_ai_response

Request:
{
    "chatId": "c1",
    "userMessage": "Hi",
    "assistantId": "a1",
    "modelSettings": {"temperature": 0.7, "max_tokens": 1000, "model_name": "gpt-4"}
}

Response (200):
{
    "aiResponse": "Hello! How can I help?",
    "messageId": "0d6c..."
}

Errors use ``{"error": "...", "details": "..."}`` with status 400, 404 or
500. Every response carries the CORS headers, including unexpected
failures, which are logged and answered with a generic 500.
"""
import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from chat_responder.config import Settings
from chat_responder.errors import (
    CORS_HEADERS,
    InvalidRequest,
    ResponderError,
    error_response_for,
    internal_error,
)
from chat_responder.services.orchestrator import GenerateRequest, ResponseOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _parse_body(request: Request) -> GenerateRequest:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidRequest(message="Request body must be valid JSON") from exc

    if not isinstance(body, dict):
        raise InvalidRequest(message="Request body must be a JSON object")

    try:
        return GenerateRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequest(message="Invalid request body") from exc


@router.options("/generate_ai_response")
async def generate_ai_response_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/generate_ai_response")
async def generate_ai_response(request: Request) -> JSONResponse:
    """
    Generate, persist and return the AI reply to one chat message.

    Validation runs before the configuration check, and the configuration
    check runs before any store or network access.
    """
    try:
        payload = await _parse_body(request)
        payload.require_fields()

        settings: Settings = request.app.state.settings
        settings.require_secrets()

        orchestrator: ResponseOrchestrator = request.app.state.orchestrator
        result = await orchestrator.handle(payload)

    except ResponderError as exc:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "generate.failed",
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            error=exc.message,
            details=exc.details,
            exc_info=exc.status_code >= 500,
        )
        return error_response_for(exc)

    except Exception as exc:
        logger.exception(
            "generate.unhandled_error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return internal_error()

    return JSONResponse(content=result.to_body(), headers=CORS_HEADERS)
