"""
Pydantic configuration schema for Botrelay.

This module defines all configuration models with validation.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Platform Configuration
# =============================================================================


class PlatformAdapterConfig(BaseModel):
    """Base configuration for platform adapters."""

    enable: bool = False
    require_mention: bool = True  # Ignore group messages that don't address the bot


class TelegramConfig(PlatformAdapterConfig):
    """Telegram bot configuration.

    Uses long polling, so no public URL or webhook is required.
    """

    bot_token: str = ""
    bot_username: str | None = None  # Used for @mention detection in groups
    allowed_users: list[str] = Field(default_factory=list)
    polling_interval: float = 2.0


class DiscordConfig(PlatformAdapterConfig):
    """Discord bot configuration.

    Maintains a persistent Gateway WebSocket connection.
    """

    bot_token: str = ""
    allowed_guilds: list[str] = Field(default_factory=list)
    allowed_channels: list[str] = Field(default_factory=list)


class WhatsAppConfig(PlatformAdapterConfig):
    """WhatsApp Cloud API configuration.

    Inbound messages arrive through a webhook that the host application
    forwards to the adapter; replies use the Graph API.
    """

    phone_number_id: str = ""
    access_token: str = ""
    api_version: str = "v22.0"
    base_url: str = "https://graph.facebook.com"
    timeout: float = 30.0


class PlatformsConfig(BaseModel):
    """Multi-platform messaging configuration."""

    model_config = ConfigDict(extra="allow")

    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)


# =============================================================================
# Agent Configuration
# =============================================================================


class SideTaskConfig(BaseModel):
    """Best-effort generation that runs after a reply."""

    enable: bool = True
    model: str | None = None  # Defaults to agent.model


class AgentConfig(BaseModel):
    """Language model agent configuration."""

    model_config = ConfigDict(extra="allow")

    model: str = "openai/gpt-4o-mini"
    strategy: str = "auto"
    max_rounds: int = Field(default=5, ge=1, le=50)
    max_steps: int = Field(default=20, ge=1, le=200)
    temperature: float | None = None
    system_prompt: str = (
        "You are a helpful assistant chatting with people through messaging apps. "
        "Answer concisely and in the user's language."
    )
    fallback_message: str = "Sorry, something went wrong while answering. Please try again."
    rate_limit_message: str = "You're sending messages too quickly. Please slow down."
    title: SideTaskConfig = Field(default_factory=SideTaskConfig)
    suggestions: SideTaskConfig = Field(default_factory=SideTaskConfig)


# =============================================================================
# Memory Configuration
# =============================================================================


class HistoryConfig(BaseModel):
    """Conversation history configuration."""

    enabled: bool = True
    limit: int = Field(default=20, ge=1, le=500)


class WorkingMemoryConfig(BaseModel):
    """Working memory configuration."""

    enabled: bool = True
    scope: Literal["user", "conversation"] = "user"


class MemoryConfig(BaseModel):
    """Memory store configuration."""

    backend: Literal["memory", "file"] = "memory"
    path: str | None = None  # File backend directory (default ~/.botrelay/memory)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    working_memory: WorkingMemoryConfig = Field(default_factory=WorkingMemoryConfig)


# =============================================================================
# Gateway Configuration
# =============================================================================


class DeliveryConfig(BaseModel):
    """Outbound delivery retry configuration."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=8.0, ge=0)


class RegistryConfig(BaseModel):
    """Conversation registry configuration."""

    drain_timeout: float = Field(default=30.0, ge=0)
    idle_ttl: float | None = None  # Seconds; None disables eviction


class NormalizerConfig(BaseModel):
    """Inbound normalizer configuration."""

    allowed_bot_ids: list[str] = Field(default_factory=list)


class RateLimitConfig(BaseModel):
    """Per-user inbound rate limit."""

    enable: bool = True
    per_user: int = Field(default=10, ge=1)  # messages per window
    window: float = Field(default=60.0, gt=0)


class AuditConfig(BaseModel):
    """Audit logging configuration."""

    enable: bool = True
    path: str | None = None  # Defaults to ~/.botrelay/audit.jsonl
    include_messages: bool = False  # Store message text instead of a hash


class GeneralConfig(BaseModel):
    """General settings configuration."""

    model_config = ConfigDict(extra="allow")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


# =============================================================================
# Root Configuration Model
# =============================================================================


class Config(BaseModel):
    """
    Root configuration model for Botrelay.

    Configuration can be loaded from YAML files, environment variables,
    and CLI flags, merged in order of priority.
    """

    model_config = ConfigDict(extra="allow")

    platforms: PlatformsConfig = Field(default_factory=PlatformsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    general: GeneralConfig = Field(default_factory=GeneralConfig)

    def enabled_platforms(self) -> list[str]:
        """Names of the platform sections with enable: true."""
        return [
            name
            for name in ("telegram", "discord", "whatsapp")
            if getattr(self.platforms, name).enable
        ]
