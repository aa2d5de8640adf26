"""AI response pipeline.

Sequences one inbound chat message through the store and the completion
API:

    1. Validate required fields                     (InvalidRequest)
    2. Fetch assistant, then chat                   (NotFound, before any write)
    3. Fetch prior messages
    4. Persist the user message                     (StorageError)
    5. Assemble context and call the completion API (UpstreamError / UpstreamExhausted)
    6. Persist the AI message                       (StorageError)
    7. First exchange only: generate and store a chat title (best-effort)

Steps run strictly in order; a failure aborts the rest and nothing
already written is rolled back.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from chat_responder.config import Settings
from chat_responder.db.models import SenderType
from chat_responder.errors import InvalidRequest, NotFound
from chat_responder.services.completion_client import CompletionClient, RetryPolicy
from chat_responder.services.context import build_context
from chat_responder.services.model_registry import get_model, resolve_model
from chat_responder.services.store import ConversationStore
from chat_responder.services.title_generator import generate_title_with_fallback

logger = structlog.get_logger(__name__)

# Stored and returned when the completion API answers with no content.
EMPTY_COMPLETION_FALLBACK = "Sorry, I couldn't generate a response."


# ============================================================================
# Request / Result Models
# ============================================================================

class ModelSettings(BaseModel):
    """Optional per-request overrides. ``model_name`` is advisory.

    ``max_tokens`` of 0 means "use the default".
    """
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=0)
    model_name: Optional[str] = None


class GenerateRequest(BaseModel):
    """Body of ``POST /generate_ai_response``."""
    model_config = ConfigDict(populate_by_name=True)

    chat_id: Optional[str] = Field(default=None, alias="chatId")
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    assistant_id: Optional[str] = Field(default=None, alias="assistantId")
    model_settings: Optional[ModelSettings] = Field(default=None, alias="modelSettings")

    def missing_fields(self) -> list[str]:
        """Aliases of required fields that are absent or empty."""
        required = {
            "chatId": self.chat_id,
            "userMessage": self.user_message,
            "assistantId": self.assistant_id,
        }
        return [name for name, value in required.items() if not value]

    def require_fields(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise InvalidRequest(missing)


@dataclass(frozen=True)
class GenerateResult:
    ai_response: str
    message_id: str

    def to_body(self) -> dict[str, str]:
        return {"aiResponse": self.ai_response, "messageId": self.message_id}


# ============================================================================
# Orchestrator
# ============================================================================

class ResponseOrchestrator:
    """
    Runs the AI response pipeline for one request at a time.

    Holds no per-request state; one instance is shared by all requests of
    the process.

    Args:
        store: Conversation store gateway
        completion: Completion API client
        settings: Service settings (completion and title defaults)
    """

    def __init__(
        self,
        store: ConversationStore,
        completion: CompletionClient,
        settings: Settings,
    ):
        self.store = store
        self.completion = completion
        self.settings = settings

    def resolve_model_settings(self, overrides: Optional[ModelSettings]) -> tuple[str, float, int]:
        """Apply request overrides on top of configured defaults.

        ``max_tokens`` is capped at the model's output limit.
        """
        overrides = overrides or ModelSettings()
        model = resolve_model(overrides.model_name, self.settings.default_model)
        temperature = (
            overrides.temperature
            if overrides.temperature is not None
            else self.settings.default_temperature
        )
        max_tokens = overrides.max_tokens or self.settings.default_max_tokens
        model_spec = get_model(model)
        if model_spec is not None and max_tokens > model_spec.max_output_tokens:
            logger.info(
                "generate.max_tokens.capped",
                model=model,
                requested=max_tokens,
                limit=model_spec.max_output_tokens,
            )
            max_tokens = model_spec.max_output_tokens
        return model, temperature, max_tokens

    async def handle(self, request: GenerateRequest) -> GenerateResult:
        """
        Produce and persist the AI reply to one user message.

        Raises:
            InvalidRequest: chatId, userMessage or assistantId missing
            NotFound: assistant or chat does not exist
            StorageError: a store read or write failed
            UpstreamError, UpstreamExhausted: the completion call failed
        """
        request.require_fields()
        log = logger.bind(chat_id=request.chat_id, assistant_id=request.assistant_id)

        assistant = await self.store.get_assistant(request.assistant_id)
        if assistant is None:
            raise NotFound("assistant", request.assistant_id)

        chat = await self.store.get_chat(request.chat_id)
        if chat is None:
            raise NotFound("chat", request.chat_id)

        history = await self.store.list_messages(chat.id)
        # Decided before the user message is stored (see DESIGN.md).
        needs_title = not history and not chat.title

        await self.store.insert_message(chat.id, SenderType.USER, request.user_message)

        messages = build_context(assistant.prompt, history, request.user_message)
        model, temperature, max_tokens = self.resolve_model_settings(request.model_settings)
        log.info(
            "generate.completion.start",
            model=model,
            history_length=len(history),
            context_length=len(messages),
        )

        ai_text = await self.completion.complete(messages, model, temperature, max_tokens)
        if not ai_text:
            log.warning("generate.completion.empty", model=model)
            ai_text = EMPTY_COMPLETION_FALLBACK

        ai_message = await self.store.insert_message(chat.id, SenderType.AI, ai_text)
        log.info("generate.ai_message.saved", message_id=ai_message.id)

        if needs_title:
            await self._assign_title(chat.id, request.user_message)

        return GenerateResult(ai_response=ai_text, message_id=ai_message.id)

    async def _assign_title(self, chat_id: str, first_message: str) -> None:
        """Generate and store the chat title. Failures are logged, never raised."""
        try:
            title = await generate_title_with_fallback(
                self.completion,
                first_message,
                model=self.settings.title_model,
                temperature=self.settings.title_temperature,
                max_tokens=self.settings.title_max_tokens,
                retry_policy=RetryPolicy(max_attempts=self.settings.title_max_attempts),
                timeout=self.settings.title_timeout,
            )
            written = await self.store.set_chat_title(chat_id, title)
        except Exception as e:
            logger.warning(
                "generate.title.failed",
                chat_id=chat_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return
        logger.info("generate.title.saved", chat_id=chat_id, title=title, written=written)
