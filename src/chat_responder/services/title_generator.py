"""Auto-generate chat titles from the opening user message.

Title generation is best-effort: it uses a cheap model with a small token
budget and a low temperature, and any failure is logged and swallowed.
generate_title_with_fallback() always returns something usable, falling
back to the first few words of the message.
"""
from typing import Optional

import structlog

from chat_responder.errors import ResponderError
from chat_responder.services.completion_client import CompletionClient, RetryPolicy
from chat_responder.services.context import ChatMessage

logger = structlog.get_logger(__name__)

TITLE_SYSTEM_PROMPT = (
    "Generate a short, concise title (maximum 6 words) for a conversation "
    "that starts with this message. Return only the title without quotes "
    "or additional text."
)

# Maximum length for message preview in prompt
MAX_MESSAGE_PREVIEW_LENGTH: int = 500

# Maximum length for generated title
MAX_TITLE_LENGTH: int = 50

DEFAULT_TITLE: str = "New Conversation"

# Titles are best-effort: one attempt, no backoff sleeps
TITLE_RETRY_POLICY = RetryPolicy(max_attempts=1)


def _create_fallback_title(message: str) -> str:
    """First five words of the message, or DEFAULT_TITLE."""
    if not message:
        return DEFAULT_TITLE

    words = message.split()[:5]
    fallback = " ".join(words)[:MAX_TITLE_LENGTH]
    return fallback if fallback.strip() else DEFAULT_TITLE


def _clean_title(title: str) -> str:
    """
    Clean and normalize a generated title.

    Removes quotes, excessive whitespace, and truncates to max length.
    """
    title = " ".join(title.split())

    # Remove surrounding quotes
    if (title.startswith('"') and title.endswith('"')) or \
       (title.startswith("'") and title.endswith("'")):
        title = title[1:-1]

    title = title.strip('"\' ')

    return title[:MAX_TITLE_LENGTH].rstrip()


async def generate_title(
    client: CompletionClient,
    first_message: str,
    model: str = "gpt-3.5-turbo",
    temperature: float = 0.3,
    max_tokens: int = 20,
    retry_policy: RetryPolicy = TITLE_RETRY_POLICY,
    timeout: float = 10.0,
) -> Optional[str]:
    """
    Ask the completion API for a short title.

    The call runs with its own retry policy and timeout so a slow or
    rate-limited title model only delays the reply by *timeout*.

    Args:
        client: Completion client
        first_message: Opening user message of the chat
        model: Cheap model for titles
        temperature: Low sampling temperature
        max_tokens: Small token budget
        retry_policy: Attempts for the title call (single attempt by default)
        timeout: Per-request timeout in seconds

    Returns:
        Optional[str]: Cleaned title, or None if generation failed
    """
    if not first_message or not first_message.strip():
        return None

    messages = [
        ChatMessage(role="system", content=TITLE_SYSTEM_PROMPT),
        ChatMessage(role="user", content=first_message[:MAX_MESSAGE_PREVIEW_LENGTH]),
    ]

    try:
        raw_title = await client.complete(
            messages,
            model,
            temperature,
            max_tokens,
            retry_policy=retry_policy,
            timeout=timeout,
        )
    except ResponderError as e:
        logger.warning(
            "title_generation.upstream_error",
            error_type=type(e).__name__,
            model=model,
        )
        return None
    except Exception as e:
        logger.warning(
            "title_generation.error",
            error=str(e),
            model=model,
        )
        return None

    title = _clean_title(raw_title)
    if not title:
        logger.warning("title_generation.empty_response", model=model)
        return None

    logger.debug("title_generation.success", model=model, title=title)
    return title


async def generate_title_with_fallback(
    client: CompletionClient,
    first_message: str,
    model: str = "gpt-3.5-turbo",
    temperature: float = 0.3,
    max_tokens: int = 20,
    retry_policy: RetryPolicy = TITLE_RETRY_POLICY,
    timeout: float = 10.0,
) -> str:
    """
    Generate a title, falling back to the first words of the message.

    Returns:
        str: Generated or fallback title (never empty)
    """
    title = await generate_title(
        client, first_message, model, temperature, max_tokens, retry_policy, timeout
    )

    if title:
        return title

    return _create_fallback_title(first_message)
