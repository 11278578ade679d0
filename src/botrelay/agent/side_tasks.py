"""Best-effort generation that runs after a reply: titles and suggestions."""

import asyncio
import logging
import re
from collections.abc import Coroutine
from typing import Any, Optional

from botrelay.agent.capability import AgentCapability
from botrelay.memory.manager import MemoryManager

logger = logging.getLogger(__name__)

TITLE_MAX_WORDS = 6
SUGGESTION_LIMIT = 3
SUGGESTION_MAX_CHARS = 50

TITLE_INSTRUCTIONS = (
    f"Generate a concise, descriptive title (max {TITLE_MAX_WORDS} words) that captures "
    "the user's main question or intent. Only plain text, no markdown."
)
SUGGESTIONS_INSTRUCTIONS = (
    f"Generate {SUGGESTION_LIMIT} short, relevant follow-up questions "
    f"(max {SUGGESTION_MAX_CHARS} chars each) based on the conversation. "
    "One per line. Only plain text, no markdown."
)

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def clean_title(text: str) -> str:
    """Single line, no quotes or markdown, at most TITLE_MAX_WORDS words."""
    line = next((ln for ln in text.strip().splitlines() if ln.strip()), "")
    line = line.strip().strip("\"'`*#").strip()
    return " ".join(line.split()[:TITLE_MAX_WORDS])


def parse_suggestions(text: str) -> list[str]:
    """Split model output into at most SUGGESTION_LIMIT short suggestions."""
    suggestions = []
    for line in text.splitlines():
        item = _LIST_MARKER.sub("", line).strip().strip("\"'")
        if not item:
            continue
        if len(item) > SUGGESTION_MAX_CHARS:
            item = item[: SUGGESTION_MAX_CHARS - 1].rstrip() + "…"
        suggestions.append(item)
        if len(suggestions) == SUGGESTION_LIMIT:
            break
    return suggestions


class SideTaskRunner:
    """Schedules title and suggestion generation without blocking replies.

    Title generation happens at most once per conversation; suggestions
    are regenerated after every completed run. Failures are logged only.
    """

    def __init__(
        self,
        capability: AgentCapability,
        memory: MemoryManager,
        title_enabled: bool = True,
        suggestions_enabled: bool = True,
        title_model: Optional[str] = None,
        suggestions_model: Optional[str] = None,
    ):
        self.capability = capability
        self.memory = memory
        self.title_enabled = title_enabled
        self.suggestions_enabled = suggestions_enabled
        self.title_model = title_model
        self.suggestions_model = suggestions_model
        self._tasks: set[asyncio.Task] = set()
        self._titling: set[str] = set()

    def schedule(self, conversation_key: str, transcript: list[dict[str, Any]]) -> None:
        """Start the side tasks for a finished run."""
        if self.title_enabled:
            self._spawn(self.generate_title(conversation_key, transcript), "title", conversation_key)
        if self.suggestions_enabled:
            self._spawn(
                self.generate_suggestions(conversation_key, transcript),
                "suggestions",
                conversation_key,
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str, conversation_key: str) -> None:
        task = asyncio.create_task(self._guard(coro, name, conversation_key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro: Coroutine[Any, Any, Any], name: str, conversation_key: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{name} generation failed for {conversation_key}: {e}")

    async def generate_title(
        self, conversation_key: str, transcript: list[dict[str, Any]]
    ) -> Optional[str]:
        """Generate and store a title if the conversation has none.

        Returns:
            The stored title, or None if nothing was stored
        """
        if conversation_key in self._titling:
            return None
        meta = await self.memory.get_meta(conversation_key)
        if meta.title:
            return None

        self._titling.add(conversation_key)
        try:
            text = await self.capability.generate_text(
                TITLE_INSTRUCTIONS, transcript, self.title_model
            )
            title = clean_title(text)
            if not title:
                return None
            if await self.memory.set_title(conversation_key, title):
                logger.info(f"Titled conversation {conversation_key}: {title}")
                return title
            return None
        finally:
            self._titling.discard(conversation_key)

    async def generate_suggestions(
        self, conversation_key: str, transcript: list[dict[str, Any]]
    ) -> list[str]:
        """Generate and store follow-up suggestions."""
        text = await self.capability.generate_text(
            SUGGESTIONS_INSTRUCTIONS, transcript, self.suggestions_model
        )
        suggestions = parse_suggestions(text)
        await self.memory.set_suggestions(conversation_key, suggestions)
        return suggestions

    async def join(self) -> None:
        """Wait for scheduled side tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        """Cancel outstanding side tasks (shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
