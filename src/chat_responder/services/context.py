"""Build the message list sent to the completion API.

The full history is replayed on every call: one system entry with the
assistant prompt, every stored message in order, then the new user
message. Nothing is dropped, reordered or summarized.
"""
from typing import Iterable, Literal

from pydantic import BaseModel

from chat_responder.db.models import Message, SenderType

Role = Literal["system", "user", "assistant"]

_ROLE_BY_SENDER: dict[str, Role] = {
    SenderType.USER.value: "user",
    SenderType.AI.value: "assistant",
}


class ChatMessage(BaseModel):
    """One role-tagged entry in a completion request. Never persisted."""
    role: Role
    content: str


def role_for_sender(sender_type: str) -> Role:
    """Map a stored sender kind onto a completion role (``ai`` -> ``assistant``)."""
    return _ROLE_BY_SENDER.get(sender_type, "assistant")


def build_context(
    system_prompt: str,
    history: Iterable[Message],
    user_message: str,
) -> list[ChatMessage]:
    """
    Assemble the ordered completion context.

    Args:
        system_prompt: Assistant prompt, used verbatim
        history: Prior messages of the chat, oldest first
        user_message: The new user text

    Returns:
        list[ChatMessage]: ``1 + len(history) + 1`` entries

    Example:
        >>> build_context("You are helpful.", [], "Hi")
        [ChatMessage(role='system', content='You are helpful.'), ChatMessage(role='user', content='Hi')]
    """
    messages = [ChatMessage(role="system", content=system_prompt)]
    messages.extend(
        ChatMessage(role=role_for_sender(m.sender_type), content=m.content)
        for m in history
    )
    messages.append(ChatMessage(role="user", content=user_message))
    return messages
