import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from chat_responder.db.models import Message
from chat_responder.services.context import build_context, role_for_sender


def _message(sender: str, content: str) -> Message:
    return Message(chat_id="c1", sender_type=sender, content=content)


def test_first_exchange_has_system_and_user_entries():
    """An empty history yields exactly the system prompt and the new message."""
    messages = build_context("You are helpful.", [], "Hi")
    assert [(m.role, m.content) for m in messages] == [
        ("system", "You are helpful."),
        ("user", "Hi"),
    ]


def test_history_is_replayed_in_order_with_role_mapping():
    """N prior messages produce N+2 entries, ai mapped to assistant."""
    history = [
        _message("user", "What is 2+2?"),
        _message("ai", "4"),
        _message("user", "And 3+3?"),
        _message("ai", "6"),
    ]
    messages = build_context("Math tutor", history, "Thanks!")

    assert len(messages) == len(history) + 2
    assert messages[0].role == "system"
    assert [(m.role, m.content) for m in messages[1:-1]] == [
        ("user", "What is 2+2?"),
        ("assistant", "4"),
        ("user", "And 3+3?"),
        ("assistant", "6"),
    ]
    assert (messages[-1].role, messages[-1].content) == ("user", "Thanks!")


def test_exactly_one_system_entry():
    history = [_message("user", "hello"), _message("ai", "hi")]
    messages = build_context("prompt", history, "next")
    assert sum(1 for m in messages if m.role == "system") == 1


def test_prompt_is_used_verbatim():
    prompt = "  You are a pirate.\nAlways answer in rhymes.  "
    messages = build_context(prompt, [], "Ahoy")
    assert messages[0].content == prompt


def test_role_for_sender():
    assert role_for_sender("user") == "user"
    assert role_for_sender("ai") == "assistant"
