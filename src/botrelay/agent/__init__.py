"""Agent execution: capability, runner, events and side tasks."""

from botrelay.agent.capability import AgentCapability, AgentTool, LiteLLMAgent
from botrelay.agent.models import (
    AgentEvent,
    AgentRequest,
    AppContext,
    Done,
    ErrorEvent,
    RunOptions,
    RunOutcome,
    RunStatus,
    StepComplete,
    TextDelta,
    ToolCall,
    build_app_context,
    format_context_for_llm,
)
from botrelay.agent.runner import AgentRun, AgentRunner
from botrelay.agent.side_tasks import SideTaskRunner

__all__ = [
    "AgentCapability",
    "AgentEvent",
    "AgentRequest",
    "AgentRun",
    "AgentRunner",
    "AgentTool",
    "AppContext",
    "Done",
    "ErrorEvent",
    "LiteLLMAgent",
    "RunOptions",
    "RunOutcome",
    "RunStatus",
    "SideTaskRunner",
    "StepComplete",
    "TextDelta",
    "ToolCall",
    "build_app_context",
    "format_context_for_llm",
]
