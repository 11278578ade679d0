"""Unit tests for outbound delivery."""

import pytest

from botrelay.agent.models import Done, ErrorEvent, StepComplete, TextDelta, ToolCall
from botrelay.exceptions import (
    AuthError,
    DeliveryError,
    FailureType,
    RateLimited,
    TransientNetworkError,
    classify_delivery_error,
    should_retry,
)
from botrelay.platforms.delivery import (
    DEFAULT_FALLBACK_MESSAGE,
    OutboundDelivery,
    ReplyRenderer,
    RetryPolicy,
    render,
)
from botrelay.platforms.models import (
    OutboundAction,
    OutboundKind,
    PlatformCapabilities,
    PlatformType,
    TextFormat,
)
from botrelay.platforms.protocol import PlatformAdapter

TELEGRAM_CAPS = PlatformCapabilities(
    supports_markdown=True,
    supports_typing_indicator=True,
    markdown_flavor="MarkdownV2",
    max_message_length=4096,
)
DISCORD_CAPS = PlatformCapabilities(
    supports_markdown=False,
    supports_typing_indicator=True,
    max_message_length=2000,
)


class MockAdapter(PlatformAdapter):
    """Mock platform adapter that records outbound actions."""

    def __init__(
        self,
        platform_type: PlatformType = PlatformType.TELEGRAM,
        capabilities: PlatformCapabilities = TELEGRAM_CAPS,
        failures: list[Exception] | None = None,
        typing_error: Exception | None = None,
    ):
        super().__init__()
        self._platform_type = platform_type
        self._capabilities = capabilities
        self.failures = list(failures or [])
        self.typing_error = typing_error
        self.sent: list[tuple[str, OutboundAction]] = []
        self.attempts = 0

    @property
    def platform_type(self) -> PlatformType:
        return self._platform_type

    @property
    def capabilities(self) -> PlatformCapabilities:
        return self._capabilities

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, chat_id: str, action: OutboundAction) -> None:
        if action.kind == OutboundKind.TYPING_INDICATOR:
            if self.typing_error:
                raise self.typing_error
            self.sent.append((chat_id, action))
            return
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append((chat_id, action))


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _events(*events):
    for event in events:
        yield event


def _replies(actions):
    return [a for a in actions if a.kind == OutboundKind.REPLY]


class TestRender:
    """Tests for rendering event sequences."""

    def test_single_step_answer_is_one_markdown_reply(self):
        """Test that a one-step run yields exactly the final text."""
        actions = render(
            [TextDelta(text="Hi"), StepComplete(step_content="Hi"), Done(final_text="Hi there!")],
            TELEGRAM_CAPS,
        )

        assert actions[0].kind == OutboundKind.TYPING_INDICATOR
        replies = _replies(actions)
        assert len(replies) == 1
        assert replies[0].text == "Hi there!"
        assert replies[0].formatting == TextFormat.MARKDOWN

    def test_typing_only_once_and_first(self):
        actions = render(
            [
                TextDelta(text="a"),
                StepComplete(),
                TextDelta(text="b"),
                StepComplete(),
                Done(final_text="b"),
            ],
            TELEGRAM_CAPS,
        )

        typing = [a for a in actions if a.kind == OutboundKind.TYPING_INDICATOR]
        assert len(typing) == 1
        assert actions[0] is typing[0]

    def test_no_typing_without_capability(self):
        actions = render([Done(final_text="ok")], PlatformCapabilities())

        assert [a.kind for a in actions] == [OutboundKind.REPLY]

    def test_deltas_are_not_sent_per_token(self):
        """Test that deltas are buffered until the step boundary."""
        renderer = ReplyRenderer(TELEGRAM_CAPS)

        assert renderer.feed(TextDelta(text="Hel")) == []
        assert renderer.feed(TextDelta(text="lo")) == []
        assert renderer.feed(StepComplete(step_content="Hello")) == []

    def test_intermediate_step_flushed_when_work_continues(self):
        """Test that each finished step becomes its own reply."""
        actions = render(
            [
                TextDelta(text="Let me check."),
                StepComplete(step_content="Let me check."),
                ToolCall(name="lookup", args={"q": "x"}),
                StepComplete(),
                TextDelta(text="Found it."),
                StepComplete(step_content="Found it."),
                Done(final_text="Found it."),
            ],
            TELEGRAM_CAPS,
        )

        assert [a.text for a in _replies(actions)] == ["Let me check.", "Found it."]

    def test_plain_text_for_platforms_without_markdown(self):
        actions = render(
            [TextDelta(text="**Hi** there"), StepComplete(), Done(final_text="**Hi** there")],
            DISCORD_CAPS,
        )

        replies = _replies(actions)
        assert len(replies) == 1
        assert replies[0].text == "Hi there"
        assert replies[0].formatting == TextFormat.PLAIN

    def test_error_yields_single_fallback(self):
        """Test that internal error details never reach the user."""
        actions = render(
            [
                TextDelta(text="partial"),
                ErrorEvent(kind="model", message="upstream 500: secret details"),
                TextDelta(text="more"),
                StepComplete(),
                Done(final_text="partial"),
            ],
            TELEGRAM_CAPS,
        )

        replies = _replies(actions)
        assert len(replies) == 1
        assert replies[0].text == DEFAULT_FALLBACK_MESSAGE
        assert replies[0].formatting == TextFormat.PLAIN

    def test_error_after_pending_step_drops_it(self):
        actions = render(
            [
                TextDelta(text="thinking"),
                StepComplete(),
                ErrorEvent(kind="tool", message="boom"),
                Done(),
            ],
            TELEGRAM_CAPS,
            fallback_message="Oops",
        )

        assert [a.text for a in _replies(actions)] == ["Oops"]

    def test_done_without_final_text_uses_buffer(self):
        actions = render([TextDelta(text="abc"), Done()], TELEGRAM_CAPS)

        assert [a.text for a in _replies(actions)] == ["abc"]

    def test_empty_run_sends_nothing(self):
        actions = render([StepComplete(), Done()], TELEGRAM_CAPS, include_typing=False)

        assert actions == []

    def test_long_reply_is_chunked(self):
        caps = PlatformCapabilities(supports_markdown=False, max_message_length=10)

        actions = render([Done(final_text="aaaa bbbb cccc")], caps)

        assert [a.text for a in actions] == ["aaaa bbbb", "cccc"]

    def test_events_after_done_ignored(self):
        renderer = ReplyRenderer(TELEGRAM_CAPS)
        renderer.feed(Done(final_text="one"))

        assert renderer.feed(Done(final_text="two")) == []
        assert renderer.feed(TextDelta(text="x")) == []


class TestRetryPolicy:
    """Tests for backoff computation."""

    def test_exponential_backoff_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=2.0)
        error = TransientNetworkError("timeout")

        assert [policy.delay_for(n, error) for n in range(1, 5)] == [0.5, 1.0, 2.0, 2.0]

    def test_retry_after_honored(self):
        policy = RetryPolicy()

        assert policy.delay_for(1, RateLimited("slow down", retry_after=3.0)) == 3.0
        assert policy.delay_for(1, RateLimited("slow down")) == 0.5


class TestFailureClassification:
    """Tests for delivery error classification."""

    @pytest.mark.parametrize(
        "error, failure, retry",
        [
            (RateLimited("429"), FailureType.RATE_LIMIT, True),
            (AuthError("401"), FailureType.AUTH_ERROR, False),
            (TransientNetworkError("503"), FailureType.NETWORK_ERROR, True),
            (DeliveryError("400"), FailureType.INVALID_REQUEST, False),
            (ConnectionError("reset"), FailureType.NETWORK_ERROR, True),
            (ValueError("odd"), FailureType.UNKNOWN, True),
        ],
    )
    def test_classification(self, error, failure, retry):
        assert classify_delivery_error(error) == failure
        assert should_retry(failure) is retry


class TestOutboundDelivery:
    """Tests for sending with retry."""

    @pytest.mark.asyncio
    async def test_send_retries_transient_failures(self):
        adapter = MockAdapter(
            failures=[TransientNetworkError("timeout"), TransientNetworkError("timeout")]
        )
        sleep = RecordingSleep()
        delivery = OutboundDelivery(sleep=sleep)

        ok = await delivery.send(adapter, "c1", OutboundAction.reply("hi"))

        assert ok is True
        assert adapter.attempts == 3
        assert sleep.delays == [0.5, 1.0]
        assert len(adapter.sent) == 1

    @pytest.mark.asyncio
    async def test_send_honors_retry_after(self):
        adapter = MockAdapter(failures=[RateLimited("429", retry_after=4.0)])
        sleep = RecordingSleep()

        ok = await OutboundDelivery(sleep=sleep).send(adapter, "c1", OutboundAction.reply("hi"))

        assert ok is True
        assert sleep.delays == [4.0]

    @pytest.mark.asyncio
    async def test_send_gives_up_after_max_attempts(self):
        adapter = MockAdapter(failures=[TransientNetworkError("down")] * 5)
        sleep = RecordingSleep()
        delivery = OutboundDelivery(retry=RetryPolicy(max_attempts=3), sleep=sleep)

        ok = await delivery.send(adapter, "c1", OutboundAction.reply("hi"))

        assert ok is False
        assert adapter.attempts == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self):
        adapter = MockAdapter(failures=[AuthError("bad token")])
        sleep = RecordingSleep()

        ok = await OutboundDelivery(sleep=sleep).send(adapter, "c1", OutboundAction.reply("hi"))

        assert ok is False
        assert adapter.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_deliver_sends_typing_then_reply(self):
        adapter = MockAdapter()
        delivery = OutboundDelivery(sleep=RecordingSleep())

        report = await delivery.deliver(
            adapter,
            "c1",
            _events(TextDelta(text="Hi"), StepComplete(step_content="Hi"), Done(final_text="Hi there!")),
            reply_to_message_id="m1",
        )

        kinds = [action.kind for _, action in adapter.sent]
        assert kinds == [OutboundKind.TYPING_INDICATOR, OutboundKind.REPLY]
        _, reply = adapter.sent[1]
        assert reply.text == "Hi there!"
        assert reply.formatting == TextFormat.MARKDOWN
        assert reply.reply_to_message_id == "m1"
        assert report.replies_sent == 1
        assert report.replies_failed == 0
        assert report.final_text == "Hi there!"
        assert report.errored is False

    @pytest.mark.asyncio
    async def test_deliver_ignores_typing_failure(self):
        adapter = MockAdapter(typing_error=TransientNetworkError("typing failed"))

        report = await OutboundDelivery(sleep=RecordingSleep()).deliver(
            adapter, "c1", _events(Done(final_text="ok"))
        )

        assert report.replies_sent == 1
        assert [a.text for _, a in adapter.sent] == ["ok"]

    @pytest.mark.asyncio
    async def test_deliver_reports_errors_and_failed_sends(self):
        adapter = MockAdapter(
            platform_type=PlatformType.DISCORD,
            capabilities=DISCORD_CAPS,
            failures=[DeliveryError("400 bad request")],
        )

        report = await OutboundDelivery(sleep=RecordingSleep()).deliver(
            adapter,
            "c1",
            _events(ErrorEvent(message="boom"), Done()),
        )

        assert report.errored is True
        assert report.replies_failed == 1
        assert report.replies_sent == 0
