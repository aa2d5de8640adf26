"""Conversation store gateway.

Reads and writes the assistant, chat and message records used by the AI
response pipeline. Each operation opens its own session and commits on
its own; there is no transaction spanning several operations.

Lookups return ``None`` when a row does not exist. Any database failure
is surfaced as StorageError tagged with the operation name. Nothing is
retried here.
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col, select

from chat_responder.db.models import Assistant, Chat, Message, SenderType
from chat_responder.errors import StorageError

logger = structlog.get_logger(__name__)


class ConversationStore:
    """
    Gateway over the ``assistants``, ``chats`` and ``messages`` tables.

    Args:
        session_factory: async_sessionmaker bound to the process engine

    Example:
        store = ConversationStore(create_session_factory(engine))
        chat = await store.get_chat("c1")
        history = await store.list_messages("c1")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_assistant(self, assistant_id: str) -> Optional[Assistant]:
        try:
            async with self._session_factory() as session:
                return await session.get(Assistant, assistant_id)
        except SQLAlchemyError as exc:
            raise StorageError("get_assistant", exc) from exc

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        try:
            async with self._session_factory() as session:
                return await session.get(Chat, chat_id)
        except SQLAlchemyError as exc:
            raise StorageError("get_chat", exc) from exc

    async def list_messages(self, chat_id: str) -> list[Message]:
        """Return the chat's messages, oldest first. Empty list if none."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Message)
                    .where(Message.chat_id == chat_id)
                    .order_by(col(Message.created_at).asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError("list_messages", exc) from exc

    async def insert_message(self, chat_id: str, sender: SenderType, content: str) -> Message:
        """
        Insert one message and bump the chat's ``updated_at``.

        Returns:
            Message: the stored row with its generated id and timestamp
        """
        sender = SenderType(sender)
        message = Message(chat_id=chat_id, sender_type=sender.value, content=content)
        try:
            async with self._session_factory() as session:
                session.add(message)
                await session.execute(
                    update(Chat)
                    .where(col(Chat.id) == chat_id)
                    .values(updated_at=message.created_at)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"insert_{sender.value}_message", exc) from exc

        logger.debug(
            "store.message.inserted",
            chat_id=chat_id,
            message_id=message.id,
            sender_type=sender.value,
        )
        return message

    async def set_chat_title(self, chat_id: str, title: str) -> bool:
        """
        Set the chat title if it has none yet.

        Returns:
            bool: True if the title was written, False if one already existed
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Chat)
                    .where(col(Chat.id) == chat_id, col(Chat.title).is_(None))
                    .values(title=title, updated_at=datetime.now(timezone.utc))
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError("set_chat_title", exc) from exc
        return bool(result.rowcount)
