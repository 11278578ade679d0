"""Tests for agent models and prompt assembly."""

import pytest
from pydantic import ValidationError

from botrelay.agent.capability import build_messages
from botrelay.agent.models import (
    AgentRequest,
    AppContext,
    Done,
    RunOptions,
    build_app_context,
    format_context_for_llm,
)
from botrelay.memory.models import HistoryEntry, TurnRole
from botrelay.platforms.models import (
    AttachmentContent,
    AttachmentKind,
    InboundMessage,
    MixedContent,
    PlatformType,
    TextContent,
)


def _message(content=None, **fields) -> InboundMessage:
    return InboundMessage(
        provider=PlatformType.TELEGRAM,
        chat_id="c1",
        author_id="u1",
        author_name="Alice",
        content=content or TextContent(body="hello"),
        **fields,
    )


class TestAppContext:
    """Tests for AppContext construction."""

    def test_defaults(self):
        context = build_app_context(_message())

        assert context.user_id == "u1"
        assert context.chat_id == "c1"
        assert context.provider == PlatformType.TELEGRAM
        assert context.user_name == "Alice"
        assert context.current_page is None
        assert context.attached_pages == ()
        assert context.timezone == "UTC"
        assert context.locale == "en-US"

    def test_overrides(self):
        context = build_app_context(
            _message(),
            current_page="/pricing",
            attached_pages=["/docs", "/faq"],
            timezone="Europe/Paris",
            locale=None,
        )

        assert context.current_page == "/pricing"
        assert context.attached_pages == ("/docs", "/faq")
        assert context.timezone == "Europe/Paris"
        assert context.locale == "en-US"

    def test_frozen(self):
        context = build_app_context(_message())

        with pytest.raises(ValidationError):
            context.user_id = "someone else"

    def test_fresh_per_message(self):
        first = build_app_context(_message())
        second = build_app_context(_message())

        assert first == second
        assert first is not second

    def test_format_for_llm(self):
        context = AppContext(
            user_id="u1",
            chat_id="c1",
            provider=PlatformType.DISCORD,
            attached_pages=("/a", "/b"),
        )

        text = format_context_for_llm(context)

        assert text.startswith("<user_context>")
        assert text.endswith("</user_context>")
        assert "- Provider: discord" in text
        assert "- User Name: Unknown" in text
        assert "- Current Page: Homepage" in text
        assert "- Attached Pages: /a, /b" in text


class TestRunOptions:
    """Tests for run bounds."""

    def test_defaults(self):
        options = RunOptions()

        assert options.strategy == "auto"
        assert options.max_rounds == 5
        assert options.max_steps == 20

    def test_bounds_must_be_positive(self):
        with pytest.raises(ValidationError):
            RunOptions(max_rounds=0)
        with pytest.raises(ValidationError):
            RunOptions(max_steps=0)

    def test_done_defaults_to_empty_text(self):
        assert Done().final_text == ""


class TestBuildMessages:
    """Tests for LiteLLM message assembly."""

    def test_order_and_system_prompt(self):
        message = _message()
        request = AgentRequest(
            message=message,
            context=build_app_context(message),
            history=[
                HistoryEntry(role=TurnRole.USER, content="earlier question"),
                HistoryEntry(role=TurnRole.ASSISTANT, content="earlier answer"),
            ],
            working_memory={"name": "Alice", "language": "French"},
            system_prompt="Be brief.",
        )

        messages = build_messages(request)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        system = messages[0]["content"]
        assert system.startswith("Be brief.")
        assert "<user_context>" in system
        assert "- name: Alice" in system
        assert "- language: French" in system
        assert messages[1]["content"] == "earlier question"
        assert messages[-1] == {"role": "user", "content": "hello"}

    def test_no_working_memory_block_when_empty(self):
        message = _message()
        request = AgentRequest(message=message, context=build_app_context(message))

        messages = build_messages(request)

        assert "<working_memory>" not in messages[0]["content"]
        assert len(messages) == 2

    def test_mixed_content_parts(self):
        message = _message(
            MixedContent(
                parts=[
                    TextContent(body="what is this?"),
                    AttachmentContent(
                        uri="https://cdn.example.com/cat.png",
                        kind=AttachmentKind.IMAGE,
                        caption="my cat",
                    ),
                    AttachmentContent(uri="file-123", kind=AttachmentKind.DOCUMENT),
                ]
            )
        )
        request = AgentRequest(message=message, context=build_app_context(message))

        parts = build_messages(request)[-1]["content"]

        assert parts == [
            {"type": "text", "text": "what is this?"},
            {"type": "image_url", "image_url": {"url": "https://cdn.example.com/cat.png"}},
            {"type": "text", "text": "my cat"},
            {"type": "text", "text": "[document attached: file-123]"},
        ]
