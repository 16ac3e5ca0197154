"""Consultation engine: process supervision, output parsing, tool policy."""
from .models import (
    ApprovalRequirement,
    ApprovalRuleSet,
    BudgetTier,
    ConditionalApproval,
    CostTier,
    InvocationRequest,
    InvocationResult,
    ParseDegradation,
    RequestContext,
    SecurityTier,
    TaskCriticality,
    TimeoutPolicy,
    TokenUsage,
    ToolDescriptor,
)
from .config import EngineConfig
from .errors import (
    ConfigError,
    InactivityTimeout,
    InitialResponseTimeout,
    InvocationTimeoutError,
    ProcessExitError,
    SpawnError,
    UnknownToolError,
    WallBounceError,
)

__all__ = [
    # Supervision (lazy import)
    "ProcessSupervisor",
    "StreamEventParser",
    # Tool policy (lazy import)
    "ToolPolicyEngine",
    "ToolRegistry",
    "ApprovalResolver",
    "build_default_catalog",
    "default_priority_tables",
    "env_readiness_checks",
    # YAML config (lazy import)
    "WallBounceConfig",
    "load_yaml_config",
    "build_policy_engine",
    # Providers (lazy import)
    "Provider",
    "CodexProvider",
    # Models
    "ApprovalRequirement",
    "ApprovalRuleSet",
    "BudgetTier",
    "ConditionalApproval",
    "CostTier",
    "InvocationRequest",
    "InvocationResult",
    "ParseDegradation",
    "RequestContext",
    "SecurityTier",
    "TaskCriticality",
    "TimeoutPolicy",
    "TokenUsage",
    "ToolDescriptor",
    # Config
    "EngineConfig",
    # Errors
    "ConfigError",
    "InactivityTimeout",
    "InitialResponseTimeout",
    "InvocationTimeoutError",
    "ProcessExitError",
    "SpawnError",
    "UnknownToolError",
    "WallBounceError",
]


def __getattr__(name: str):
    if name == "ProcessSupervisor":
        from .supervisor import ProcessSupervisor
        return ProcessSupervisor
    if name == "StreamEventParser":
        from .stream_parser import StreamEventParser
        return StreamEventParser
    if name == "ToolPolicyEngine":
        from .tool_policy import ToolPolicyEngine
        return ToolPolicyEngine
    if name == "ToolRegistry":
        from .tool_registry import ToolRegistry
        return ToolRegistry
    if name == "ApprovalResolver":
        from .approval import ApprovalResolver
        return ApprovalResolver
    if name in ("build_default_catalog", "default_priority_tables",
                "env_readiness_checks"):
        from . import catalog
        return getattr(catalog, name)
    if name in ("WallBounceConfig", "load_yaml_config", "build_policy_engine"):
        from . import yaml_config
        return getattr(yaml_config, name)
    if name == "Provider":
        from .providers.base import Provider
        return Provider
    if name == "CodexProvider":
        from .providers.codex_provider import CodexProvider
        return CodexProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
