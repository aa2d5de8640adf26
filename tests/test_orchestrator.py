import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from chat_responder.config import Settings
from chat_responder.db.models import Assistant, Chat, Message
from chat_responder.errors import InvalidRequest, NotFound, StorageError, UpstreamError, UpstreamExhausted
from chat_responder.services.completion_client import CompletionClient, RetryPolicy
from chat_responder.services.orchestrator import (
    EMPTY_COMPLETION_FALLBACK,
    GenerateRequest,
    ModelSettings,
    ResponseOrchestrator,
)


class FakeStore:
    """In-memory stand-in for ConversationStore that records every call."""

    def __init__(self, assistants=(), chats=(), messages=()):
        self.assistants = {a.id: a for a in assistants}
        self.chats = {c.id: c for c in chats}
        self.messages = list(messages)
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self._counter = 0

    async def get_assistant(self, assistant_id):
        self.calls.append("get_assistant")
        return self.assistants.get(assistant_id)

    async def get_chat(self, chat_id):
        self.calls.append("get_chat")
        return self.chats.get(chat_id)

    async def list_messages(self, chat_id):
        self.calls.append("list_messages")
        return [m for m in self.messages if m.chat_id == chat_id]

    async def insert_message(self, chat_id, sender, content):
        operation = f"insert_{sender.value}_message"
        self.calls.append(operation)
        if operation in self.fail_on:
            raise StorageError(operation, RuntimeError("insert failed"))
        self._counter += 1
        message = Message(
            id=f"m{self._counter}",
            chat_id=chat_id,
            sender_type=sender.value,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    async def set_chat_title(self, chat_id, title):
        self.calls.append("set_chat_title")
        if "set_chat_title" in self.fail_on:
            raise StorageError("set_chat_title", RuntimeError("update failed"))
        chat = self.chats[chat_id]
        if chat.title is not None:
            return False
        chat.title = title
        return True


class FakeCompletion:
    """Returns the chat reply, or the title when called with the title model."""

    def __init__(self, reply="Hello! How can I help?", title="Friendly Greeting", error=None, title_error=None):
        self.reply = reply
        self.title = title
        self.error = error
        self.title_error = title_error
        self.calls = []

    async def complete(self, messages, model, temperature, max_tokens, retry_policy=None, timeout=None):
        call = SimpleNamespace(
            messages=list(messages),
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            retry_policy=retry_policy,
            timeout=timeout,
        )
        self.calls.append(call)
        if model == "gpt-3.5-turbo":
            if self.title_error is not None:
                raise self.title_error
            return self.title
        if self.error is not None:
            raise self.error
        return self.reply


def _settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        database_service_key="service-key",
        openai_api_key="sk-test",
    )


def _store(**chat_overrides) -> FakeStore:
    chat = Chat(id="c1", user_id="u1", assistant_id="a1", **chat_overrides)
    return FakeStore(
        assistants=[Assistant(id="a1", prompt="You are helpful.")],
        chats=[chat],
    )


def _request(**overrides) -> GenerateRequest:
    body = {"chatId": "c1", "userMessage": "Hi", "assistantId": "a1"}
    body.update(overrides)
    return GenerateRequest.model_validate(body)


def _handle(store, completion, request):
    orchestrator = ResponseOrchestrator(store, completion, _settings())
    return asyncio.run(orchestrator.handle(request))


def test_first_exchange_end_to_end():
    store = _store()
    completion = FakeCompletion()

    result = _handle(store, completion, _request())

    assert result.to_body() == {"aiResponse": "Hello! How can I help?", "messageId": "m2"}
    chat_call = completion.calls[0]
    assert [(m.role, m.content) for m in chat_call.messages] == [
        ("system", "You are helpful."),
        ("user", "Hi"),
    ]
    assert (chat_call.model, chat_call.temperature, chat_call.max_tokens) == ("gpt-4", 0.7, 1000)

    ai_message = next(m for m in store.messages if m.id == result.message_id)
    assert ai_message.sender_type == "ai"
    assert ai_message.chat_id == "c1"

    assert store.calls == [
        "get_assistant",
        "get_chat",
        "list_messages",
        "insert_user_message",
        "insert_ai_message",
        "set_chat_title",
    ]
    assert store.chats["c1"].title == "Friendly Greeting"


def test_later_exchange_replays_history_and_skips_title():
    store = _store()
    completion = FakeCompletion()
    _handle(store, completion, _request())

    completion.reply = "Sure."
    result = _handle(store, completion, _request(userMessage="Tell me more"))

    assert result.ai_response == "Sure."
    assert store.calls.count("set_chat_title") == 1
    last_chat_call = completion.calls[-1]
    assert [(m.role, m.content) for m in last_chat_call.messages] == [
        ("system", "You are helpful."),
        ("user", "Hi"),
        ("assistant", "Hello! How can I help?"),
        ("user", "Tell me more"),
    ]


def test_title_not_retried_after_failed_first_attempt():
    store = _store()
    store.fail_on.add("set_chat_title")
    completion = FakeCompletion()

    first = _handle(store, completion, _request())
    store.fail_on.clear()
    _handle(store, completion, _request(userMessage="Again"))

    assert first.ai_response == "Hello! How can I help?"
    assert store.calls.count("set_chat_title") == 1
    assert store.chats["c1"].title is None


def test_existing_title_is_never_regenerated():
    store = _store(title="Already named")
    completion = FakeCompletion()

    _handle(store, completion, _request())

    assert "set_chat_title" not in store.calls
    assert [c.model for c in completion.calls] == ["gpt-4"]


def test_title_generation_failure_falls_back_to_first_words():
    store = _store()
    completion = FakeCompletion(title_error=UpstreamExhausted(3))

    result = _handle(store, completion, _request(userMessage="Plan a weekend trip to the mountains"))

    assert result.ai_response == "Hello! How can I help?"
    assert store.chats["c1"].title == "Plan a weekend trip to"


@pytest.mark.parametrize("missing", ["chatId", "userMessage", "assistantId"])
def test_missing_required_field(missing):
    store = _store()
    completion = FakeCompletion()

    with pytest.raises(InvalidRequest) as excinfo:
        _handle(store, completion, _request(**{missing: None}))

    assert excinfo.value.status_code == 400
    assert excinfo.value.missing == [missing]
    assert store.calls == []
    assert completion.calls == []


def test_empty_user_message_is_invalid():
    with pytest.raises(InvalidRequest):
        _handle(_store(), FakeCompletion(), _request(userMessage=""))


def test_unknown_assistant_is_not_found_before_any_write():
    store = _store()

    with pytest.raises(NotFound) as excinfo:
        _handle(store, FakeCompletion(), _request(assistantId="ghost"))

    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Assistant not found"
    assert store.calls == ["get_assistant"]
    assert store.messages == []


def test_unknown_chat_is_not_found_before_any_write():
    store = _store()

    with pytest.raises(NotFound) as excinfo:
        _handle(store, FakeCompletion(), _request(chatId="ghost"))

    assert excinfo.value.message == "Chat not found"
    assert store.calls == ["get_assistant", "get_chat"]
    assert store.messages == []


def test_user_message_storage_failure_aborts_before_completion():
    store = _store()
    store.fail_on.add("insert_user_message")
    completion = FakeCompletion()

    with pytest.raises(StorageError) as excinfo:
        _handle(store, completion, _request())

    assert excinfo.value.message == "Error saving user message"
    assert completion.calls == []


def test_ai_message_storage_failure_skips_title():
    store = _store()
    store.fail_on.add("insert_ai_message")

    with pytest.raises(StorageError):
        _handle(store, FakeCompletion(), _request())

    assert "set_chat_title" not in store.calls


def test_upstream_failure_keeps_user_message_only():
    store = _store()
    completion = FakeCompletion(error=UpstreamError(503, "unavailable"))

    with pytest.raises(UpstreamError):
        _handle(store, completion, _request())

    assert [m.sender_type for m in store.messages] == ["user"]
    assert "set_chat_title" not in store.calls


def test_empty_completion_uses_fallback_text():
    store = _store()
    result = _handle(store, FakeCompletion(reply=""), _request())
    assert result.ai_response == EMPTY_COMPLETION_FALLBACK


def test_model_settings_overrides():
    store = _store()
    completion = FakeCompletion()

    _handle(store, completion, _request(modelSettings={"temperature": 0, "max_tokens": 256, "model_name": "gpt-4o"}))

    call = completion.calls[0]
    assert (call.model, call.temperature, call.max_tokens) == ("gpt-4o", 0, 256)


def test_unknown_model_name_falls_back_to_default():
    orchestrator = ResponseOrchestrator(_store(), FakeCompletion(), _settings())
    model, temperature, max_tokens = orchestrator.resolve_model_settings(ModelSettings(model_name="my-custom-model"))
    assert (model, temperature, max_tokens) == ("gpt-4", 0.7, 1000)


def test_max_tokens_zero_uses_default():
    orchestrator = ResponseOrchestrator(_store(), FakeCompletion(), _settings())
    _, _, max_tokens = orchestrator.resolve_model_settings(ModelSettings(max_tokens=0))
    assert max_tokens == 1000


def test_max_tokens_capped_at_model_limit():
    orchestrator = ResponseOrchestrator(_store(), FakeCompletion(), _settings())
    model, _, max_tokens = orchestrator.resolve_model_settings(
        ModelSettings(model_name="gpt-3.5-turbo", max_tokens=50_000)
    )
    assert (model, max_tokens) == ("gpt-3.5-turbo", 4_096)


def test_title_call_is_single_attempt_with_short_timeout():
    store = _store()
    completion = FakeCompletion()

    _handle(store, completion, _request())

    title_call = completion.calls[1]
    assert title_call.model == "gpt-3.5-turbo"
    assert title_call.retry_policy.max_attempts == 1
    assert title_call.timeout == 10.0
    assert completion.calls[0].retry_policy is None


def test_rate_limited_title_model_does_not_delay_reply():
    """The reply returns without backoff sleeps when only the title model is throttled."""
    sleeps: list[float] = []
    title_requests: list[dict] = []

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["model"] == "gpt-3.5-turbo":
            title_requests.append(body)
            return httpx.Response(429, text="slow down")
        return httpx.Response(200, json={"choices": [{"message": {"content": "Hello! How can I help?"}}]})

    store = _store()

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = CompletionClient(http, api_key="sk-test", retry_policy=RetryPolicy(), sleep=record_sleep)
            orchestrator = ResponseOrchestrator(store, client, _settings())
            return await orchestrator.handle(_request(userMessage="Plan a weekend trip to the mountains"))

    result = asyncio.run(_run())

    assert result.ai_response == "Hello! How can I help?"
    assert sleeps == []
    assert len(title_requests) == 1
    assert store.chats["c1"].title == "Plan a weekend trip to"
