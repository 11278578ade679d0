"""
Botrelay - Multi-platform chat bot gateway

Accepts messages from Telegram, Discord and WhatsApp, serializes them per
conversation, streams them through an LLM agent and delivers the replies
back through each platform's own API.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("botrelay")
except PackageNotFoundError:
    __version__ = "0.3.0"

__all__ = [
    "__version__",
]
