"""Provider abstraction for reasoning-engine CLIs."""
from .base import Provider, ProviderResult
from .codex_provider import CodexProvider

__all__ = [
    "Provider",
    "ProviderResult",
    "CodexProvider",
]
