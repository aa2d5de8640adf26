"""
SQLModel database models for the Chat Responder.

Defines the tables the AI response pipeline reads and writes:
    - Assistant: configured persona (system prompt + localized metadata)
    - Chat: conversation thread between one user and one assistant
    - Message: one turn in a chat, authored by the user or the AI

Table names match the hosted store the mobile client talks to
(``assistants``, ``chats``, ``messages``). Ids are UUID text; timestamps
are UTC.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SenderType(str, Enum):
    """Author of a stored message."""
    USER = "user"
    AI = "ai"


class Assistant(SQLModel, table=True):
    """
    Assistant persona model. Read-only for the response pipeline.

    Attributes:
        id: Unique assistant identifier
        prompt: System prompt sent first in every completion request
        name_en/name_ru: Display name per locale
        description_en/description_ru: Description per locale
        category_en/category_ru: Catalogue category per locale
        icon_url: Optional icon shown in the assistant list
        is_active: Whether the assistant is offered to users

    Table: assistants
    """
    __tablename__ = "assistants"

    id: str = Field(default_factory=_new_id, primary_key=True)
    prompt: str
    name_en: Optional[str] = Field(default=None)
    name_ru: Optional[str] = Field(default=None)
    description_en: Optional[str] = Field(default=None)
    description_ru: Optional[str] = Field(default=None)
    category_en: Optional[str] = Field(default=None)
    category_ru: Optional[str] = Field(default=None)
    icon_url: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True, index=True)


class Chat(SQLModel, table=True):
    """
    Conversation thread model.

    The title is filled in once, from the opening user message, and never
    overwritten afterwards.

    Table: chats
    """
    __tablename__ = "chats"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    assistant_id: str = Field(foreign_key="assistants.id", index=True)
    title: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))


class Message(SQLModel, table=True):
    """
    Chat message model.

    Ordered by ``created_at``; that order is the transcript replayed to
    the completion API.

    Table: messages
    """
    __tablename__ = "messages"

    id: str = Field(default_factory=_new_id, primary_key=True)
    chat_id: str = Field(foreign_key="chats.id", index=True)
    sender_type: str  # 'user' | 'ai'
    content: str
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True), index=True)
