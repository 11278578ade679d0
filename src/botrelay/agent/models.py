"""Data models for agent execution."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from botrelay.memory.models import HistoryEntry
from botrelay.platforms.models import InboundMessage, PlatformType

# =============================================================================
# Agent Events
# =============================================================================


class TextDelta(BaseModel):
    """Incremental text produced by the model."""

    type: Literal["text_delta"] = "text_delta"
    text: str


class StepComplete(BaseModel):
    """A reasoning or tool step finished. Carries the step's text."""

    type: Literal["step_complete"] = "step_complete"
    step_content: str = ""


class ToolCall(BaseModel):
    """The model invoked a tool."""

    type: Literal["tool_call"] = "tool_call"
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    """Model or tool failure. The message is internal detail, never shown to users."""

    type: Literal["error"] = "error"
    kind: str = "model"  # "model" or "tool"
    message: str


class Done(BaseModel):
    """Terminal event, emitted exactly once per run."""

    type: Literal["done"] = "done"
    final_text: str = ""


AgentEvent = Annotated[
    Union[TextDelta, StepComplete, ToolCall, ErrorEvent, Done],
    Field(discriminator="type"),
]


# =============================================================================
# Context
# =============================================================================


class AppContext(BaseModel):
    """Immutable per-message snapshot of who is talking and where."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    chat_id: str
    provider: PlatformType
    current_page: Optional[str] = None
    attached_pages: tuple[str, ...] = ()
    timezone: str = "UTC"
    locale: str = "en-US"
    user_name: Optional[str] = None


def build_app_context(message: InboundMessage, **overrides: Any) -> AppContext:
    """Build a fresh AppContext for an inbound message.

    Args:
        message: The inbound message
        **overrides: Optional current_page, attached_pages, timezone, locale

    Returns:
        AppContext snapshot
    """
    fields: dict[str, Any] = {
        "user_id": message.author_id,
        "chat_id": message.chat_id,
        "provider": message.provider,
        "user_name": message.author_name,
    }
    fields.update({k: v for k, v in overrides.items() if v is not None})
    if "attached_pages" in fields:
        fields["attached_pages"] = tuple(fields["attached_pages"])
    return AppContext(**fields)


def format_context_for_llm(context: AppContext) -> str:
    """Render the context as a block for the system prompt."""
    attached = ", ".join(context.attached_pages) if context.attached_pages else "None"
    return "\n".join(
        [
            "<user_context>",
            f"- User ID: {context.user_id}",
            f"- Chat ID: {context.chat_id}",
            f"- Provider: {context.provider.value}",
            f"- User Name: {context.user_name or 'Unknown'}",
            f"- Current Page: {context.current_page or 'Homepage'}",
            f"- Attached Pages: {attached}",
            f"- Timezone: {context.timezone}",
            f"- Locale: {context.locale}",
            "</user_context>",
        ]
    )


# =============================================================================
# Run configuration and results
# =============================================================================


class RunOptions(BaseModel):
    """Bounds and policy for one agent run."""

    strategy: str = "auto"  # Opaque policy token passed to the capability
    max_rounds: int = Field(default=5, ge=1)
    max_steps: int = Field(default=20, ge=1)


class AgentRequest(BaseModel):
    """Everything the agent capability needs for one invocation."""

    message: InboundMessage
    context: AppContext
    history: list[HistoryEntry] = Field(default_factory=list)
    working_memory: dict[str, Any] = Field(default_factory=dict)
    options: RunOptions = Field(default_factory=RunOptions)
    system_prompt: Optional[str] = None


class RunStatus(str, Enum):
    """Lifecycle of one agent run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunOutcome(BaseModel):
    """Summary of a finished run."""

    status: RunStatus
    final_text: str = ""
    steps: int = 0
    rounds: int = 0
    tool_calls: int = 0
    stopped_reason: str = "completed"  # completed, max_steps, max_rounds, error, cancelled
    error: Optional[str] = None
