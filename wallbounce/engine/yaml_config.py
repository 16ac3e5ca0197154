"""YAML configuration loader.

Loads engine settings, tool descriptors, priority tables and readiness
requirements from one file. Every section is optional: missing
sections fall back to EngineConfig defaults and the built-in catalog.

Example YAML:
    engine:
      codex_command: codex
      default_model: gpt-5
      initial_response_timeout_seconds: 600
      inactivity_timeout_seconds: 90
      log_level: DEBUG

    use_default_catalog: true     # seed with the built-in tools

    tools:
      sharepoint:
        label: sharepoint_kb
        connector_id: connector_sharepoint
        allowed_operations: [search, fetch, list_recent_documents, get_site]
        cost_tier: medium
        security_tier: internal
        approval:
          never: [search, fetch, list_recent_documents]
          conditional:
            tool_names: [get_site]
            when:
              task_criticality: critical
        readiness:
          flag: SHAREPOINT_MCP_ENABLED
          credentials: [SHAREPOINT_OAUTH_TOKEN]

    priorities:
      basic:
        context7: 10
        cipher: 8
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .catalog import (
    DEFAULT_READINESS_ENV,
    build_default_catalog,
    default_priority_tables,
    env_readiness_checks,
)
from .conditions import parse_condition
from .config import EngineConfig
from .errors import ConfigError
from .models import (
    ApprovalRequirement,
    ApprovalRule,
    ApprovalRuleSet,
    ConditionalApproval,
    TaskCriticality,
    ToolDescriptor,
)
from .tool_policy import ToolPolicyEngine
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class WallBounceConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    tools: list[ToolDescriptor]
    priorities: dict[TaskCriticality, dict[str, int]]
    readiness_env: dict[str, tuple[str, tuple[str, ...]]] = field(
        default_factory=dict
    )


def _parse_approval(tool_id: str, raw: Any) -> ApprovalRule:
    if raw is None:
        return ApprovalRequirement.ALWAYS
    if isinstance(raw, str):
        try:
            return ApprovalRequirement(raw)
        except ValueError as exc:
            raise ConfigError(
                f"Tool '{tool_id}': approval must be 'always', 'never' "
                f"or a mapping, got {raw!r}"
            ) from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Tool '{tool_id}': invalid approval rule {raw!r}")

    conditional = None
    conditional_raw = raw.get("conditional")
    if conditional_raw:
        if "when" not in conditional_raw:
            raise ConfigError(
                f"Tool '{tool_id}': conditional approval needs a 'when' clause"
            )
        conditional = ConditionalApproval(
            operations=tuple(conditional_raw.get("tool_names", []) or []),
            condition=parse_condition(conditional_raw["when"]),
        )
    return ApprovalRuleSet(
        never=tuple(raw.get("never", []) or []),
        always=tuple(raw.get("always", []) or []),
        conditional=conditional,
    )


def _parse_tool(tool_id: str, cfg: dict) -> ToolDescriptor:
    if not isinstance(cfg, dict):
        raise ConfigError(f"Tool '{tool_id}': expected a mapping, got {cfg!r}")
    try:
        return ToolDescriptor(
            tool_id=tool_id,
            label=cfg.get("label", tool_id),
            allowed_operations=tuple(cfg.get("allowed_operations", []) or []),
            cost_tier=cfg.get("cost_tier", "medium"),
            security_tier=cfg.get("security_tier", "internal"),
            approval_rule=_parse_approval(tool_id, cfg.get("approval")),
            server_url=cfg.get("server_url"),
            connector_id=cfg.get("connector_id"),
        )
    except ValueError as exc:
        raise ConfigError(f"Tool '{tool_id}': {exc}") from exc


def _parse_priorities(raw: Any) -> dict[TaskCriticality, dict[str, int]]:
    if not isinstance(raw, dict):
        raise ConfigError(f"'priorities' must be a mapping, got {raw!r}")
    tables: dict[TaskCriticality, dict[str, int]] = {}
    for criticality, table in raw.items():
        try:
            key = TaskCriticality(criticality)
        except ValueError as exc:
            raise ConfigError(
                f"Unknown task criticality in priorities: {criticality!r}"
            ) from exc
        tables[key] = {str(t): int(p) for t, p in (table or {}).items()}
    return tables


def load_yaml_config(path: str | Path) -> WallBounceConfig:
    """Load and parse a YAML config file.

    Tools and priority tables declared in the file override built-in
    entries with the same id or criticality; ``use_default_catalog:
    false`` starts from an empty catalog instead.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    # ── Engine config ──────────────────────────────────────────
    engine_raw = raw.get("engine", {}) or {}
    engine = EngineConfig(
        codex_command=str(engine_raw.get(
            "codex_command", EngineConfig.codex_command
        )),
        default_model=str(engine_raw.get(
            "default_model", EngineConfig.default_model
        )),
        initial_response_timeout_seconds=float(engine_raw.get(
            "initial_response_timeout_seconds",
            EngineConfig.initial_response_timeout_seconds,
        )),
        inactivity_timeout_seconds=float(engine_raw.get(
            "inactivity_timeout_seconds",
            EngineConfig.inactivity_timeout_seconds,
        )),
        timeouts_enabled=bool(engine_raw.get(
            "timeouts_enabled", EngineConfig.timeouts_enabled
        )),
        scratch_dir=engine_raw.get("scratch_dir"),
        stderr_preview_chars=int(engine_raw.get(
            "stderr_preview_chars", EngineConfig.stderr_preview_chars
        )),
        estimated_calls_per_tool=int(engine_raw.get(
            "estimated_calls_per_tool", EngineConfig.estimated_calls_per_tool
        )),
        log_level=str(engine_raw.get("log_level", EngineConfig.log_level)),
    )

    # ── Tools ──────────────────────────────────────────────────
    use_defaults = bool(raw.get("use_default_catalog", True))
    tools: dict[str, ToolDescriptor] = {}
    readiness_env: dict[str, tuple[str, tuple[str, ...]]] = {}
    if use_defaults:
        tools = {d.tool_id: d for d in build_default_catalog()}
        readiness_env = dict(DEFAULT_READINESS_ENV)

    for tool_id, cfg in (raw.get("tools", {}) or {}).items():
        tool_id = str(tool_id)
        if tool_id in tools:
            logger.info("Tool %s overridden by %s", tool_id, path.name)
        tools[tool_id] = _parse_tool(tool_id, cfg)
        readiness_raw = cfg.get("readiness")
        if readiness_raw:
            readiness_env[tool_id] = (
                str(readiness_raw.get("flag", f"{tool_id.upper()}_MCP_ENABLED")),
                tuple(str(c) for c in readiness_raw.get("credentials", []) or []),
            )

    # ── Priorities ─────────────────────────────────────────────
    priorities = default_priority_tables() if use_defaults else {}
    if "priorities" in raw:
        priorities.update(_parse_priorities(raw["priorities"]))
    if TaskCriticality.BASIC not in priorities:
        raise ConfigError("priorities must define a 'basic' table")

    logger.info(
        "Loaded %d tools and %d priority tables from %s",
        len(tools), len(priorities), path.name,
    )
    return WallBounceConfig(
        engine=engine,
        tools=list(tools.values()),
        priorities=priorities,
        readiness_env=readiness_env,
    )


def build_policy_engine(
    config: WallBounceConfig,
    environ: Mapping[str, str] | None = None,
) -> ToolPolicyEngine:
    """Wire a ToolPolicyEngine from a parsed config."""
    registry = ToolRegistry(config.tools)
    return ToolPolicyEngine(
        registry,
        config.priorities,
        env_readiness_checks(environ, config.readiness_env),
        estimated_calls=config.engine.estimated_calls_per_tool,
    )
