"""Unit tests for the conversation registry."""

import asyncio

import pytest

from botrelay.exceptions import RegistryClosedError
from botrelay.platforms.models import InboundMessage, PlatformType, TextContent
from botrelay.platforms.registry import ConversationRegistry, RunState, make_key


def _msg(text: str, chat_id: str = "c1", provider: PlatformType = PlatformType.TELEGRAM):
    return InboundMessage(
        provider=provider,
        chat_id=chat_id,
        author_id="u1",
        content=TextContent(body=text),
        message_id=text,
    )


class Recorder:
    """Handler that records calls and tracks concurrent runs per key."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.gates: dict[str, asyncio.Event] = {}

    async def __call__(self, conversation, message):
        key = conversation.key
        self.active[key] = self.active.get(key, 0) + 1
        self.max_active[key] = max(self.max_active.get(key, 0), self.active[key])
        self.calls.append((key, message.text))
        try:
            gate = self.gates.get(message.text)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(self.delay)
        finally:
            self.active[key] -= 1


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestResolve:
    """Tests for conversation resolution."""

    def test_resolve_is_idempotent(self):
        registry = ConversationRegistry()

        first = registry.resolve(PlatformType.TELEGRAM, "c1")
        second = registry.resolve(PlatformType.TELEGRAM, "c1")

        assert first is second
        assert first.key == "telegram:c1"
        assert first.run_state == RunState.IDLE
        assert len(registry) == 1

    def test_keys_differ_by_provider(self):
        registry = ConversationRegistry()

        telegram = registry.resolve(PlatformType.TELEGRAM, "c1")
        discord = registry.resolve(PlatformType.DISCORD, "c1")

        assert telegram is not discord
        assert registry.get("discord:c1") is discord

    def test_empty_chat_id_rejected(self):
        with pytest.raises(ValueError):
            ConversationRegistry().resolve(PlatformType.TELEGRAM, "")

    def test_make_key(self):
        assert make_key(PlatformType.WHATSAPP, "123") == "whatsapp:123"


class TestSerialDispatch:
    """Tests for per-conversation ordering and isolation."""

    @pytest.mark.asyncio
    async def test_fifo_order_and_single_run(self):
        """Test that one conversation sees its messages in order, one at a time."""
        recorder = Recorder(delay=0.01)
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")

        for i in range(5):
            await registry.enqueue(conversation, _msg(f"m{i}"))
        await registry.join()

        assert [text for _, text in recorder.calls] == [f"m{i}" for i in range(5)]
        assert recorder.max_active["telegram:c1"] == 1
        assert conversation.run_state == RunState.IDLE
        assert conversation.runs_completed == 5

    @pytest.mark.asyncio
    async def test_busy_conversation_queues_message(self):
        """Test that a second message waits for the first run to finish."""
        recorder = Recorder()
        recorder.gates["first"] = asyncio.Event()
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")

        await registry.enqueue(conversation, _msg("first"))
        await registry.enqueue(conversation, _msg("second"))
        await _settle()

        assert [text for _, text in recorder.calls] == ["first"]
        assert conversation.run_state == RunState.RUNNING
        assert conversation.pending == 1

        recorder.gates["first"].set()
        await registry.join()

        assert [text for _, text in recorder.calls] == ["first", "second"]
        assert conversation.pending == 0
        assert conversation.run_state == RunState.IDLE

    @pytest.mark.asyncio
    async def test_stalled_conversation_does_not_block_others(self):
        """Test progress of key B while key A is stuck."""
        recorder = Recorder()
        recorder.gates["stuck"] = asyncio.Event()
        registry = ConversationRegistry(recorder)
        a = registry.resolve(PlatformType.TELEGRAM, "a")
        b = registry.resolve(PlatformType.TELEGRAM, "b")

        await registry.enqueue(a, _msg("stuck", chat_id="a"))
        for i in range(3):
            await registry.enqueue(b, _msg(f"b{i}", chat_id="b"))

        async def b_finished():
            while b.run_state != RunState.IDLE or b.pending:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(b_finished(), timeout=1.0)

        assert a.run_state == RunState.RUNNING
        assert [text for key, text in recorder.calls if key == "telegram:b"] == ["b0", "b1", "b2"]

        recorder.gates["stuck"].set()
        await registry.join()
        assert a.run_state == RunState.IDLE

    @pytest.mark.asyncio
    async def test_failed_run_does_not_stall_queue(self):
        """Test that a handler exception is isolated to its message."""
        calls = []

        async def handler(conversation, message):
            calls.append(message.text)
            if message.text == "boom":
                raise RuntimeError("agent exploded")

        registry = ConversationRegistry(handler)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")

        await registry.enqueue(conversation, _msg("boom"))
        await registry.enqueue(conversation, _msg("next"))
        await registry.join()

        assert calls == ["boom", "next"]
        assert conversation.runs_failed == 1
        assert conversation.runs_completed == 1
        assert conversation.run_state == RunState.IDLE

    @pytest.mark.asyncio
    async def test_enqueue_without_handler(self):
        registry = ConversationRegistry()
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")

        with pytest.raises(RuntimeError):
            await registry.enqueue(conversation, _msg("hello"))

    @pytest.mark.asyncio
    async def test_enqueue_after_eviction_reregisters(self):
        """Test that a conversation evicted after resolve is put back."""
        recorder = Recorder()
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")
        conversation.last_active -= 100
        assert registry.evict_idle(10) == 1

        await registry.enqueue(conversation, _msg("hello"))
        await registry.join()

        assert registry.get("telegram:c1") is conversation
        assert recorder.calls == [("telegram:c1", "hello")]


class TestShutdown:
    """Tests for draining."""

    @pytest.mark.asyncio
    async def test_shutdown_finishes_accepted_messages(self):
        recorder = Recorder(delay=0.01)
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")
        await registry.enqueue(conversation, _msg("one"))
        await registry.enqueue(conversation, _msg("two"))

        drained = await registry.shutdown(timeout=5.0)

        assert drained is True
        assert [text for _, text in recorder.calls] == ["one", "two"]
        assert registry.is_closed

    @pytest.mark.asyncio
    async def test_enqueue_rejected_while_draining(self):
        registry = ConversationRegistry(Recorder())
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")
        await registry.shutdown(timeout=1.0)

        with pytest.raises(RegistryClosedError):
            await registry.enqueue(conversation, _msg("late"))

    @pytest.mark.asyncio
    async def test_shutdown_cancels_after_timeout(self):
        recorder = Recorder()
        recorder.gates["forever"] = asyncio.Event()
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")
        await registry.enqueue(conversation, _msg("forever"))
        await registry.enqueue(conversation, _msg("never"))
        await _settle()

        drained = await registry.shutdown(timeout=0.05)

        assert drained is False
        assert conversation.run_state == RunState.IDLE
        assert [text for _, text in recorder.calls] == ["forever"]
        assert registry.stats()["workers"] == 0


class TestEviction:
    """Tests for idle eviction and stats."""

    @pytest.mark.asyncio
    async def test_evict_idle_only_removes_idle_conversations(self):
        recorder = Recorder()
        recorder.gates["busy"] = asyncio.Event()
        registry = ConversationRegistry(recorder)
        idle = registry.resolve(PlatformType.TELEGRAM, "idle")
        busy = registry.resolve(PlatformType.TELEGRAM, "busy")
        fresh = registry.resolve(PlatformType.TELEGRAM, "fresh")

        await registry.enqueue(busy, _msg("busy", chat_id="busy"))
        await _settle()
        idle.last_active -= 100
        busy.last_active -= 100

        assert registry.evict_idle(10) == 1
        assert registry.get(idle.key) is None
        assert registry.get(busy.key) is busy
        assert registry.get(fresh.key) is fresh

        recorder.gates["busy"].set()
        await registry.join()

    @pytest.mark.asyncio
    async def test_stats(self):
        recorder = Recorder()
        recorder.gates["a"] = asyncio.Event()
        registry = ConversationRegistry(recorder)
        conversation = registry.resolve(PlatformType.TELEGRAM, "c1")
        registry.resolve(PlatformType.DISCORD, "c2")

        await registry.enqueue(conversation, _msg("a"))
        await registry.enqueue(conversation, _msg("b"))
        await _settle()

        stats = registry.stats()
        assert stats["conversations"] == 2
        assert stats["active"] == 1
        assert stats["queued"] == 1
        assert stats["workers"] == 1
        assert stats["closed"] is False

        recorder.gates["a"].set()
        await registry.join()
