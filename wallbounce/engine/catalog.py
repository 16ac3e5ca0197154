"""Built-in tool catalog and environment readiness checks.

The catalog is only a seed: callers may build a ToolRegistry from it,
from YAML (see yaml_config.load_yaml_config), or both.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Mapping

from .conditions import field_equals
from .models import (
    ApprovalRequirement,
    ApprovalRuleSet,
    ConditionalApproval,
    CostTier,
    SecurityTier,
    TaskCriticality,
    ToolDescriptor,
)


def build_default_catalog() -> list[ToolDescriptor]:
    """Return the default tool descriptors in declaration order."""
    return [
        ToolDescriptor(
            tool_id="cipher",
            label="cipher_memory",
            server_url="https://cipher.byterover.dev/mcp",
            allowed_operations=(
                "store_analysis", "retrieve_context", "search_similar_prompts",
            ),
            cost_tier=CostTier.LOW,
            security_tier=SecurityTier.INTERNAL,
            approval_rule=ApprovalRuleSet(
                never=("retrieve_context", "search_similar"),
                always=("delete_memory", "bulk_update"),
            ),
        ),
        ToolDescriptor(
            tool_id="context7",
            label="context7_docs",
            server_url="https://api.context7.com/mcp",
            allowed_operations=(
                "get_library_docs", "resolve_library_id",
                "search_technical_patterns",
            ),
            cost_tier=CostTier.FREE,
            security_tier=SecurityTier.PUBLIC,
            approval_rule=ApprovalRequirement.NEVER,
        ),
        ToolDescriptor(
            tool_id="google_drive",
            label="google_drive",
            connector_id="connector_googledrive",
            allowed_operations=(
                "search", "recent_documents", "fetch", "get_profile",
            ),
            cost_tier=CostTier.MEDIUM,
            security_tier=SecurityTier.INTERNAL,
            approval_rule=ApprovalRuleSet(
                never=("search", "recent_documents", "fetch"),
                always=("delete", "share", "move"),
            ),
        ),
        ToolDescriptor(
            tool_id="gmail",
            label="gmail_tickets",
            connector_id="connector_gmail",
            allowed_operations=("search_emails", "read_email", "get_profile"),
            cost_tier=CostTier.HIGH,
            security_tier=SecurityTier.SENSITIVE,
            approval_rule=ApprovalRuleSet(
                never=("search_emails", "read_email"),
                always=("send_email", "delete_email"),
            ),
        ),
        ToolDescriptor(
            tool_id="sharepoint",
            label="sharepoint_kb",
            connector_id="connector_sharepoint",
            allowed_operations=(
                "search", "fetch", "list_recent_documents", "get_site",
            ),
            cost_tier=CostTier.MEDIUM,
            security_tier=SecurityTier.INTERNAL,
            approval_rule=ApprovalRuleSet(
                never=("search", "fetch", "list_recent_documents"),
                conditional=ConditionalApproval(
                    operations=("get_site",),
                    condition=field_equals("task_criticality", "critical"),
                ),
            ),
        ),
    ]


def default_priority_tables() -> dict[TaskCriticality, dict[str, int]]:
    """Priority of each tool per task criticality (higher first)."""
    return {
        TaskCriticality.BASIC: {
            "context7": 10,  # free, high value
            "cipher": 8,
            "google_drive": 6,
        },
        TaskCriticality.PREMIUM: {
            "cipher": 10,
            "context7": 9,
            "google_drive": 8,
            "sharepoint": 6,
        },
        TaskCriticality.CRITICAL: {
            "cipher": 10,
            "context7": 9,
            "google_drive": 8,
            "gmail": 7,  # incident management
            "sharepoint": 6,
        },
    }


# tool id → (feature flag variable, required credential variables)
DEFAULT_READINESS_ENV: dict[str, tuple[str, tuple[str, ...]]] = {
    "cipher": ("CIPHER_MCP_ENABLED", ()),
    "context7": ("CONTEXT7_MCP_ENABLED", ("CONTEXT7_API_KEY",)),
    "google_drive": ("GOOGLE_DRIVE_MCP_ENABLED", ("GOOGLE_OAUTH_TOKEN",)),
    "gmail": ("GMAIL_MCP_ENABLED", ("GMAIL_OAUTH_TOKEN",)),
    "sharepoint": ("SHAREPOINT_MCP_ENABLED", ("SHAREPOINT_OAUTH_TOKEN",)),
}


def env_readiness_checks(
    environ: Mapping[str, str] | None = None,
    requirements: Mapping[str, tuple[str, tuple[str, ...]]] | None = None,
) -> dict[str, Callable[[], bool]]:
    """Build readiness predicates from feature flags and credentials.

    A tool is ready when its flag variable is exactly ``"true"`` and
    every credential variable is non-empty. *environ* defaults to
    ``os.environ`` and is read at call time, not at build time.
    """
    env = os.environ if environ is None else environ
    reqs = DEFAULT_READINESS_ENV if requirements is None else requirements

    def _check(flag: str, credentials: tuple[str, ...]) -> Callable[[], bool]:
        def ready() -> bool:
            if env.get(flag) != "true":
                return False
            return all(env.get(name) for name in credentials)
        return ready

    return {
        tool_id: _check(flag, credentials)
        for tool_id, (flag, credentials) in reqs.items()
    }
