"""Agent runner: drives the capability and emits canonical AgentEvents."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Optional

from botrelay.agent.capability import AgentCapability
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
)
from botrelay.exceptions import AgentError
from botrelay.memory.models import HistoryEntry
from botrelay.platforms.models import InboundMessage

logger = logging.getLogger(__name__)

DoneCallback = Callable[["AgentRun", RunOutcome], None]


class AgentRun:
    """One invocation of the agent for one inbound message.

    Iterate it (once) to receive the ordered, finite AgentEvent sequence.
    The capability only advances when the consumer asks for the next
    event, so a slow consumer throttles the model stream.

    State machine: IDLE -> RUNNING -> COMPLETED | FAILED | CANCELLED
    """

    def __init__(
        self,
        conversation_key: str,
        capability: AgentCapability,
        request: AgentRequest,
        on_done: Optional[DoneCallback] = None,
    ):
        self.conversation_key = conversation_key
        self.request = request
        self.status = RunStatus.IDLE
        self.outcome: Optional[RunOutcome] = None
        self.transcript: list[dict[str, Any]] = []
        self._capability = capability
        self._on_done = on_done
        self._consumed = False

    @property
    def options(self) -> RunOptions:
        return self.request.options

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        if self._consumed:
            raise RuntimeError(f"Agent run for {self.conversation_key} was already consumed")
        self._consumed = True
        return self._events()

    async def _events(self) -> AsyncIterator[AgentEvent]:
        self.status = RunStatus.RUNNING
        options = self.options
        steps = rounds = tool_calls = 0
        current: list[str] = []
        last_step_text = ""
        final_text: Optional[str] = None
        stopped_reason = "completed"
        error: Optional[str] = None

        stream = self._capability.stream(self.request)
        try:
            async for native in stream:
                kind = native.get("type")

                if kind == "text-delta":
                    text = native.get("text") or ""
                    if text:
                        current.append(text)
                        yield TextDelta(text=text)

                elif kind == "tool-call":
                    tool_calls += 1
                    yield ToolCall(name=native.get("name", ""), args=native.get("args") or {})

                elif kind == "tool-result":
                    logger.debug(f"Tool {native.get('name')} returned for {self.conversation_key}")

                elif kind == "step-finish":
                    steps += 1
                    step_text = "".join(current)
                    current = []
                    if step_text:
                        last_step_text = step_text
                    yield StepComplete(step_content=step_text)
                    if steps >= options.max_steps:
                        stopped_reason = "max_steps"
                        break

                elif kind == "round-finish":
                    rounds += 1
                    if rounds >= options.max_rounds:
                        stopped_reason = "max_rounds"
                        break

                elif kind == "error":
                    error = native.get("message") or "unknown error"
                    stopped_reason = "error"
                    yield ErrorEvent(kind=native.get("kind") or "model", message=error)
                    break

                elif kind == "finish":
                    final_text = native.get("text")
                    break

                else:
                    logger.debug(f"Ignoring native event type {kind!r}")

        except (asyncio.CancelledError, GeneratorExit):
            partial = "".join(current) or last_step_text
            self._finish(
                RunStatus.CANCELLED, partial, steps, rounds, tool_calls, "cancelled", None
            )
            raise
        except Exception as e:
            logger.error(f"Agent run failed for {self.conversation_key}: {e}", exc_info=True)
            error = str(e)
            stopped_reason = "error"
            kind = e.kind if isinstance(e, AgentError) else "model"
            yield ErrorEvent(kind=kind, message=error)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if final_text is None:
            final_text = "".join(current) or last_step_text

        if stopped_reason in ("max_steps", "max_rounds"):
            logger.info(f"Run for {self.conversation_key} stopped at {stopped_reason}")

        status = RunStatus.FAILED if error is not None else RunStatus.COMPLETED
        self._finish(status, final_text, steps, rounds, tool_calls, stopped_reason, error)
        yield Done(final_text=final_text)

    def _finish(
        self,
        status: RunStatus,
        final_text: str,
        steps: int,
        rounds: int,
        tool_calls: int,
        stopped_reason: str,
        error: Optional[str],
    ) -> None:
        if self.outcome is not None:
            return
        self.status = status
        self.outcome = RunOutcome(
            status=status,
            final_text=final_text,
            steps=steps,
            rounds=rounds,
            tool_calls=tool_calls,
            stopped_reason=stopped_reason,
            error=error,
        )
        self.transcript = [entry.to_message_dict() for entry in self.request.history]
        self.transcript.append({"role": "user", "content": self.request.message.text})
        if final_text:
            self.transcript.append({"role": "assistant", "content": final_text})

        if self._on_done is not None:
            try:
                self._on_done(self, self.outcome)
            except Exception as e:
                logger.error(f"Run completion hook failed: {e}", exc_info=True)


class AgentRunner:
    """Creates AgentRuns and schedules side tasks when they finish."""

    def __init__(
        self,
        capability: AgentCapability,
        options: Optional[RunOptions] = None,
        system_prompt: Optional[str] = None,
        side_tasks: Any = None,
    ):
        """Initialize the runner.

        Args:
            capability: The language model capability
            options: Default run bounds
            system_prompt: Prompt prepended to every request
            side_tasks: SideTaskRunner scheduled after every run that reaches Done
        """
        self.capability = capability
        self.options = options or RunOptions()
        self.system_prompt = system_prompt
        self.side_tasks = side_tasks

    def run(
        self,
        conversation_key: str,
        message: InboundMessage,
        context: AppContext,
        history: Optional[list[HistoryEntry]] = None,
        options: Optional[RunOptions] = None,
        working_memory: Optional[dict[str, Any]] = None,
    ) -> AgentRun:
        """Prepare a run. Nothing executes until the run is iterated.

        Args:
            conversation_key: Key of the conversation being answered
            message: The inbound message
            context: AppContext snapshot for this message
            history: Recent history, most recent last
            options: Run bounds (defaults to the runner's)
            working_memory: Scoped working memory values

        Returns:
            An AgentRun to be consumed exactly once
        """
        request = AgentRequest(
            message=message,
            context=context,
            history=history or [],
            working_memory=working_memory or {},
            options=options or self.options,
            system_prompt=self.system_prompt,
        )
        return AgentRun(conversation_key, self.capability, request, on_done=self._on_run_done)

    def _on_run_done(self, run: AgentRun, outcome: RunOutcome) -> None:
        # Scheduled synchronously before `done` is handed to the consumer
        if self.side_tasks is None or outcome.status == RunStatus.CANCELLED:
            return
        self.side_tasks.schedule(run.conversation_key, run.transcript)
