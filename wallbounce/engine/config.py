"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via WALLBOUNCE_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .models import TimeoutPolicy

logger = logging.getLogger(__name__)


# Optional async callback fired after each successful supervision.
# Used for downstream persistence; failures never reach the caller.
# Signature: async def callback(event: dict[str, Any]) -> None
ResultCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: ResultCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Result callback failed for %s", event.get("event"), exc_info=True)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes"}


@dataclass
class EngineConfig:
    """Consultation engine configuration."""

    # Codex CLI invocation
    codex_command: str = "codex"
    default_model: str = "gpt-5"

    # Two-phase timeout. Set to 0 (or a negative value) to disable
    # a phase; timeouts_enabled=False disables both.
    initial_response_timeout_seconds: float = 600.0
    inactivity_timeout_seconds: float = 90.0
    timeouts_enabled: bool = True

    # Directory for staged prompt files (None = system temp dir)
    scratch_dir: str | None = None
    stderr_preview_chars: int = 500

    # Tool policy
    estimated_calls_per_tool: int = 10

    # Logging
    log_level: str = "INFO"

    result_callback: ResultCallback | None = field(default=None, repr=False)

    def timeout_policy(self) -> TimeoutPolicy:
        """Build the TimeoutPolicy these settings describe."""
        if not self.timeouts_enabled:
            return TimeoutPolicy.unbounded()
        return TimeoutPolicy.from_seconds(
            self.initial_response_timeout_seconds,
            self.inactivity_timeout_seconds,
        )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from WALLBOUNCE_* environment variables."""
        wb_vars = {
            k: v for k, v in os.environ.items() if k.startswith("WALLBOUNCE_")
        }
        if wb_vars:
            logger.info(
                "EngineConfig.from_env: WALLBOUNCE_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(wb_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no WALLBOUNCE_* env vars set, using defaults")

        config = cls(
            codex_command=os.getenv(
                "WALLBOUNCE_CODEX_COMMAND", cls.codex_command
            ),
            default_model=os.getenv(
                "WALLBOUNCE_DEFAULT_MODEL", cls.default_model
            ),
            initial_response_timeout_seconds=float(os.getenv(
                "WALLBOUNCE_INITIAL_TIMEOUT",
                str(cls.initial_response_timeout_seconds),
            )),
            inactivity_timeout_seconds=float(os.getenv(
                "WALLBOUNCE_INACTIVITY_TIMEOUT",
                str(cls.inactivity_timeout_seconds),
            )),
            timeouts_enabled=_env_flag(
                "WALLBOUNCE_ENABLE_TIMEOUT", cls.timeouts_enabled
            ),
            scratch_dir=os.getenv("WALLBOUNCE_SCRATCH_DIR") or None,
            stderr_preview_chars=int(os.getenv(
                "WALLBOUNCE_STDERR_PREVIEW", str(cls.stderr_preview_chars)
            )),
            estimated_calls_per_tool=int(os.getenv(
                "WALLBOUNCE_ESTIMATED_CALLS",
                str(cls.estimated_calls_per_tool),
            )),
            log_level=os.getenv("WALLBOUNCE_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: command=%s model=%s timeouts=%s log_level=%s",
            config.codex_command, config.default_model,
            config.timeout_policy(), config.log_level,
        )
        return config


def configure_logging(config: EngineConfig) -> None:
    """Apply the configured log level with the engine's log format."""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
