"""
Language model capability for Botrelay.

The gateway drives the model through the AgentCapability interface: given
an AgentRequest it produces a stream of native events (plain dicts with a
"type" key) that the AgentRunner re-packages as AgentEvents. LiteLLMAgent is
the default implementation and runs the tool loop via LiteLLM.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

import litellm
from litellm import acompletion

from botrelay.agent.models import AgentRequest, format_context_for_llm
from botrelay.platforms.models import (
    AttachmentContent,
    AttachmentKind,
    MixedContent,
    TextContent,
)

logger = logging.getLogger(__name__)

# Drop parameters a provider doesn't support instead of failing
litellm.drop_params = True

NativeEvent = dict[str, Any]
ToolHandler = Callable[[dict[str, Any], AgentRequest], Awaitable[Any]]


@dataclass
class AgentTool:
    """A function the model may call."""

    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def get_tool_definition(self) -> dict[str, Any]:
        """OpenAI-style function definition understood by LiteLLM."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class AgentCapability(ABC):
    """Interface to the conversational model.

    Native event types produced by stream():
        text-delta   {"text"}
        tool-call    {"name", "args"}
        tool-result  {"name", "result"}
        step-finish  {"text"}  one model call or tool execution finished
        round-finish {}        one model -> tools -> model cycle finished
        error        {"kind", "message"}
        finish       {"text"}  the model produced its final answer
    """

    @abstractmethod
    def stream(self, request: AgentRequest) -> AsyncIterator[NativeEvent]:
        """Run the model for a request and yield native events."""
        ...

    @abstractmethod
    async def generate_text(
        self,
        instructions: str,
        transcript: list[dict[str, Any]],
        model: Optional[str] = None,
    ) -> str:
        """One-shot completion over a transcript (used by side tasks)."""
        ...


def _content_parts(request: AgentRequest) -> Any:
    """User message content in LiteLLM format."""
    content = request.message.content
    if isinstance(content, TextContent):
        return content.body

    items = content.parts if isinstance(content, MixedContent) else [content]
    parts: list[dict[str, Any]] = []
    for item in items:
        if isinstance(item, TextContent):
            parts.append({"type": "text", "text": item.body})
            continue

        assert isinstance(item, AttachmentContent)
        is_url = item.uri.startswith(("http://", "https://", "data:"))
        if item.kind in (AttachmentKind.IMAGE, AttachmentKind.STICKER) and is_url:
            parts.append({"type": "image_url", "image_url": {"url": item.uri}})
        else:
            parts.append({"type": "text", "text": f"[{item.kind.value} attached: {item.uri}]"})
        if item.caption:
            parts.append({"type": "text", "text": item.caption})
    return parts


def build_messages(request: AgentRequest) -> list[dict[str, Any]]:
    """Assemble the LiteLLM message list for a request.

    Order: system prompt with context and working memory, history (oldest
    first), then the new user message.
    """
    system_parts = []
    if request.system_prompt:
        system_parts.append(request.system_prompt)
    system_parts.append(format_context_for_llm(request.context))
    if request.working_memory:
        lines = [f"- {key}: {value}" for key, value in request.working_memory.items()]
        system_parts.append("<working_memory>\n" + "\n".join(lines) + "\n</working_memory>")

    messages: list[dict[str, Any]] = [{"role": "system", "content": "\n\n".join(system_parts)}]
    messages.extend(entry.to_message_dict() for entry in request.history)
    messages.append({"role": "user", "content": _content_parts(request)})
    return messages


class LiteLLMAgent(AgentCapability):
    """Streaming tool-using agent on top of litellm.acompletion."""

    def __init__(
        self,
        model: str,
        temperature: Optional[float] = None,
        tools: Optional[list[AgentTool]] = None,
    ):
        """Initialize the agent.

        Args:
            model: LiteLLM model identifier (e.g. "openai/gpt-4o-mini")
            temperature: Sampling temperature (provider default when None)
            tools: Tools offered to the model
        """
        self.model = model
        self.temperature = temperature
        self._tools: dict[str, AgentTool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: AgentTool) -> None:
        self._tools[tool.name] = tool

    @property
    def tools(self) -> list[AgentTool]:
        return list(self._tools.values())

    def _completion_kwargs(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.model, "messages": messages, "stream": True}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self._tools:
            kwargs["tools"] = [tool.get_tool_definition() for tool in self._tools.values()]
        return kwargs

    async def stream(self, request: AgentRequest) -> AsyncIterator[NativeEvent]:
        messages = build_messages(request)
        logger.debug(
            f"Invoking {self.model} (strategy={request.options.strategy}, "
            f"{len(request.history)} history entries)"
        )

        # Bounds are enforced by the runner, which stops consuming this stream
        while True:
            try:
                response = await acompletion(**self._completion_kwargs(messages))
                text_parts: list[str] = []
                pending_calls: dict[int, dict[str, str]] = {}

                async for chunk in response:  # type: ignore
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta.content:
                        text_parts.append(delta.content)
                        yield {"type": "text-delta", "text": delta.content}
                    for call in getattr(delta, "tool_calls", None) or []:
                        slot = pending_calls.setdefault(
                            call.index or 0, {"id": "", "name": "", "arguments": ""}
                        )
                        if call.id:
                            slot["id"] = call.id
                        if call.function and call.function.name:
                            slot["name"] += call.function.name
                        if call.function and call.function.arguments:
                            slot["arguments"] += call.function.arguments
            except Exception as e:
                logger.error(f"Model call failed: {e}")
                yield {"type": "error", "kind": "model", "message": str(e)}
                return

            text = "".join(text_parts)
            yield {"type": "step-finish", "text": text}

            if not pending_calls:
                yield {"type": "finish", "text": text}
                return

            calls = [pending_calls[i] for i in sorted(pending_calls)]
            messages.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": c["id"],
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"] or "{}"},
                        }
                        for c in calls
                    ],
                }
            )

            for call in calls:
                try:
                    args = json.loads(call["arguments"] or "{}")
                except json.JSONDecodeError:
                    args = {}
                yield {"type": "tool-call", "name": call["name"], "args": args}

                tool = self._tools.get(call["name"])
                if tool is None:
                    result: Any = f"Error: unknown tool '{call['name']}'"
                else:
                    try:
                        result = await tool.handler(args, request)
                    except Exception as e:
                        logger.error(f"Tool {call['name']} failed: {e}", exc_info=True)
                        yield {"type": "error", "kind": "tool", "message": str(e)}
                        return

                content = result if isinstance(result, str) else json.dumps(result, default=str)
                yield {"type": "tool-result", "name": call["name"], "result": content}
                yield {"type": "step-finish", "text": ""}
                messages.append({"role": "tool", "tool_call_id": call["id"], "content": content})

            yield {"type": "round-finish"}

    async def generate_text(
        self,
        instructions: str,
        transcript: list[dict[str, Any]],
        model: Optional[str] = None,
    ) -> str:
        rendered = "\n".join(f"{m['role']}: {m['content']}" for m in transcript)
        response = await acompletion(
            model=model or self.model,
            messages=[
                {"role": "system", "content": instructions},
                {"role": "user", "content": rendered},
            ],
        )
        return response.choices[0].message.content or ""
