"""Abstract base for reasoning-engine providers.

Each provider wraps one external CLI. The consultation layer calls
invoke() with a prompt and gets back a ProviderResult; whether a
failure is replaced by some fallback answer is the caller's decision.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
import logging
import shutil
from typing import Any

from ..models import TimeoutPolicy, TokenUsage

logger = logging.getLogger(__name__)


@dataclass
class ProviderResult:
    """Result from a provider invocation."""
    text: str
    success: bool = True
    usage: TokenUsage | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Provider(abc.ABC):
    """Abstract provider interface."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'codex')."""

    @abc.abstractmethod
    async def invoke(
        self,
        prompt: str,
        *,
        model_id: str | None = None,
        task_criticality: str | None = None,
        allowed_operations: list[str] | None = None,
        timeouts: TimeoutPolicy | None = None,
    ) -> ProviderResult:
        """Run one prompt to completion."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if this provider's CLI is installed."""

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Return the configured binary if on PATH, else *fallback* if it is.

        A command that is not on PATH is kept as-is so error messages
        show the configured value.
        """
        if command and shutil.which(command):
            return command
        if fallback and shutil.which(fallback):
            logger.debug(
                "Command %s not found; falling back to %s for provider %s",
                command, fallback, self.name,
            )
            return fallback
        return command or fallback or ""
