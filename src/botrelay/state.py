"""
Process-wide gateway state.

Everything the pipeline shares across conversations (configuration, memory,
the conversation registry, the agent runner, delivery, inbound filters and
the audit trail) lives on one GatewayState. It is built once with
`GatewayState.create()` and released with `close()`.
"""

import logging
from typing import Any, Optional

from botrelay.agent.capability import AgentCapability, AgentTool, LiteLLMAgent
from botrelay.agent.models import AgentRequest, RunOptions
from botrelay.agent.runner import AgentRunner
from botrelay.agent.side_tasks import SideTaskRunner
from botrelay.audit.logger import AuditLogger
from botrelay.config.schema import Config
from botrelay.memory.manager import MemoryManager
from botrelay.platforms.delivery import OutboundDelivery, RetryPolicy
from botrelay.platforms.models import PlatformType
from botrelay.platforms.normalizer import InboundNormalizer
from botrelay.platforms.rate_limiter import RateLimiter
from botrelay.platforms.registry import ConversationRegistry

logger = logging.getLogger(__name__)


def build_remember_tool(memory: MemoryManager) -> AgentTool:
    """Tool letting the model store a working memory value for the user."""

    async def remember(args: dict[str, Any], request: AgentRequest) -> str:
        key = str(args.get("key", "")).strip()
        if not key:
            return "Nothing stored: a key is required."
        await memory.remember(
            request.context.user_id,
            request.message.conversation_key,
            key,
            args.get("value"),
        )
        return f"Stored {key}."

    return AgentTool(
        name="remember",
        description=(
            "Remember a fact about the user for later conversations, "
            "such as their name or preferences."
        ),
        handler=remember,
        parameters={
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "Short name of the fact"},
                "value": {"type": "string", "description": "The fact to remember"},
            },
            "required": ["key", "value"],
        },
    )


class GatewayState:
    """Shared services of one running gateway.

    Passed by reference into the orchestrator; nothing here is a module
    level singleton.
    """

    def __init__(
        self,
        config: Config,
        memory: MemoryManager,
        registry: ConversationRegistry,
        runner: AgentRunner,
        delivery: OutboundDelivery,
        normalizer: InboundNormalizer,
        audit: AuditLogger,
        side_tasks: Optional[SideTaskRunner] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config
        self.memory = memory
        self.registry = registry
        self.runner = runner
        self.delivery = delivery
        self.normalizer = normalizer
        self.audit = audit
        self.side_tasks = side_tasks
        self.rate_limiter = rate_limiter
        self._normalizers: dict[PlatformType, InboundNormalizer] = {}
        self._closed = False

    def normalizer_for(self, platform: PlatformType) -> InboundNormalizer:
        """Normalizer honoring the platform's `require_mention` setting."""
        platform_config = getattr(self.config.platforms, platform.value, None)
        require_mention = getattr(platform_config, "require_mention", True)
        if require_mention == self.normalizer.require_mention:
            return self.normalizer

        normalizer = self._normalizers.get(platform)
        if normalizer is None:
            normalizer = InboundNormalizer(
                allowed_bot_ids=self.normalizer.allowed_bot_ids,
                require_mention=require_mention,
            )
            self._normalizers[platform] = normalizer
        return normalizer

    @classmethod
    async def create(
        cls,
        config: Optional[Config] = None,
        capability: Optional[AgentCapability] = None,
        memory: Optional[MemoryManager] = None,
        audit: Optional[AuditLogger] = None,
    ) -> "GatewayState":
        """Build the gateway services from configuration.

        Args:
            config: Loaded configuration (defaults when omitted)
            capability: Language model capability. A LiteLLMAgent for
                `agent.model` is created when omitted.
            memory: Memory manager (created from `config.memory` when omitted)
            audit: Audit logger (created from `config.audit` when omitted)

        Returns:
            Initialized GatewayState
        """
        config = config or Config()
        agent_config = config.agent

        memory = memory or MemoryManager(config=config.memory)

        if capability is None:
            capability = LiteLLMAgent(agent_config.model, temperature=agent_config.temperature)
        if isinstance(capability, LiteLLMAgent) and config.memory.working_memory.enabled:
            capability.register_tool(build_remember_tool(memory))

        side_tasks = None
        if agent_config.title.enable or agent_config.suggestions.enable:
            side_tasks = SideTaskRunner(
                capability,
                memory,
                title_enabled=agent_config.title.enable,
                suggestions_enabled=agent_config.suggestions.enable,
                title_model=agent_config.title.model,
                suggestions_model=agent_config.suggestions.model,
            )

        runner = AgentRunner(
            capability,
            options=RunOptions(
                strategy=agent_config.strategy,
                max_rounds=agent_config.max_rounds,
                max_steps=agent_config.max_steps,
            ),
            system_prompt=agent_config.system_prompt,
            side_tasks=side_tasks,
        )

        delivery = OutboundDelivery(
            retry=RetryPolicy(
                max_attempts=config.delivery.max_attempts,
                base_delay=config.delivery.base_delay,
                max_delay=config.delivery.max_delay,
            ),
            fallback_message=agent_config.fallback_message,
        )

        rate_limiter = None
        if config.rate_limit.enable:
            rate_limiter = RateLimiter(config.rate_limit.per_user, config.rate_limit.window)

        state = cls(
            config=config,
            memory=memory,
            registry=ConversationRegistry(),
            runner=runner,
            delivery=delivery,
            normalizer=InboundNormalizer(allowed_bot_ids=config.normalizer.allowed_bot_ids),
            audit=audit or AuditLogger.from_config(config.audit),
            side_tasks=side_tasks,
            rate_limiter=rate_limiter,
        )
        logger.debug(f"Gateway state created (model={agent_config.model})")
        return state

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release shared resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self.side_tasks is not None:
            await self.side_tasks.cancel()
        await self.memory.close()
        self.audit.close()
        logger.debug("Gateway state closed")
