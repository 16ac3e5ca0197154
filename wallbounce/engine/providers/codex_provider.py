"""OpenAI Codex CLI provider.

Runs ``codex exec --json`` once per prompt under a ProcessSupervisor.
The prompt goes over stdin; the JSONL output is parsed into text and
token usage by StreamEventParser.
"""
from __future__ import annotations

import logging
import shutil

from ..config import EngineConfig
from ..errors import InvocationTimeoutError, ProcessExitError, WallBounceError
from ..models import InvocationRequest, TaskCriticality, TimeoutPolicy
from ..supervisor import ProcessSupervisor
from .base import Provider, ProviderResult

logger = logging.getLogger(__name__)

_REASONING_EFFORT = {
    TaskCriticality.BASIC: "minimal",
    TaskCriticality.PREMIUM: "medium",
    TaskCriticality.CRITICAL: "high",
}


class CodexProvider(Provider):
    """Provider backed by the OpenAI Codex CLI.

    Auth is left to the CLI itself (OAuth or its own config); no API key
    is read here.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._command = self.resolve_command(self._config.codex_command, "codex")
        self._supervisor = supervisor or ProcessSupervisor.from_config(self._config)

    @property
    def name(self) -> str:
        return "codex"

    def build_command(
        self,
        model_id: str | None = None,
        task_criticality: TaskCriticality | str | None = None,
        allowed_operations: list[str] | None = None,
    ) -> list[str]:
        """Build the ``codex exec`` argv. The prompt is sent on stdin."""
        cmd = [
            self._command, "exec",
            "--model", model_id or self._config.default_model,
            "--skip-git-repo-check",
            "--json",
            # Non-interactive: the CLI must never stop to ask.
            "-c", 'approval_policy="never"',
        ]
        effort = None
        if task_criticality is not None:
            try:
                effort = _REASONING_EFFORT[TaskCriticality(task_criticality)]
            except ValueError:
                logger.debug(
                    "No reasoning effort for criticality %r", task_criticality,
                )
        if effort:
            cmd.extend(["-c", f'model_reasoning_effort="{effort}"'])
        if allowed_operations:
            cmd.extend(["-c", f'allowed_tools="{",".join(allowed_operations)}"'])
        return cmd

    async def invoke(
        self,
        prompt: str,
        *,
        model_id: str | None = None,
        task_criticality: str | None = None,
        allowed_operations: list[str] | None = None,
        timeouts: TimeoutPolicy | None = None,
    ) -> ProviderResult:
        """Run *prompt* through ``codex exec``.

        Failures are reported with success=False and the error text;
        no substitute answer is produced.
        """
        model = model_id or self._config.default_model
        request = InvocationRequest(
            command=self.build_command(model, task_criticality, allowed_operations),
            prompt=prompt,
            timeouts=timeouts or self._config.timeout_policy(),
        )
        logger.info(
            "Codex invoke: model=%s criticality=%s prompt=%d chars",
            model, task_criticality, len(prompt),
        )
        try:
            result = await self._supervisor.supervise(request)
        except InvocationTimeoutError as exc:
            logger.warning("Codex %s timeout: %s", exc.phase, exc)
            return ProviderResult(
                text="",
                success=False,
                error=str(exc),
                metadata={"model": model, "timeout_phase": exc.phase},
            )
        except ProcessExitError as exc:
            logger.error("Codex failed (rc=%d): %s", exc.exit_code, exc.stderr_preview)
            return ProviderResult(
                text="",
                success=False,
                error=str(exc),
                metadata={"model": model, "exit_code": exc.exit_code},
            )
        except WallBounceError as exc:
            logger.error("Codex invocation failed: %s", exc)
            return ProviderResult(
                text="",
                success=False,
                error=str(exc),
                metadata={"model": model},
            )

        return ProviderResult(
            text=result.extracted_text,
            success=True,
            usage=result.token_usage,
            metadata={
                "model": model,
                "request_id": result.request_id,
                "processing_seconds": result.processing_duration,
                "degradations": [d.value for d in result.degradations],
            },
        )

    def is_available(self) -> bool:
        """Check if codex CLI is installed."""
        return shutil.which(self._command) is not None
