"""Tests for ToolPolicyEngine selection, mutation and cost estimation."""
from __future__ import annotations

import pytest

from wallbounce.engine.catalog import build_default_catalog, default_priority_tables
from wallbounce.engine.errors import ConfigError, UnknownToolError
from wallbounce.engine.models import (
    ApprovalRequirement,
    ApprovalRuleSet,
    BudgetTier,
    CostTier,
    RequestContext,
    SecurityTier,
    TaskCriticality,
    ToolDescriptor,
)
from wallbounce.engine.tool_policy import ToolPolicyEngine
from wallbounce.engine.tool_registry import ToolRegistry


def _all_ready(registry: ToolRegistry) -> dict:
    return {tool_id: (lambda: True) for tool_id in registry.list_ids()}


@pytest.fixture
def engine() -> ToolPolicyEngine:
    registry = ToolRegistry(build_default_catalog())
    return ToolPolicyEngine(registry, default_priority_tables(), _all_ready(registry))


def _ctx(criticality, budget, security) -> RequestContext:
    return RequestContext(
        task_criticality=criticality, budget_tier=budget, security_tier=security,
    )


# ── Selection ──


def test_critical_standard_internal_caps_at_three(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("critical", "standard", "internal"))

    assert result.tool_ids == ["cipher", "context7", "google_drive"]
    assert result.max_tools == 3
    for tool in result.tools:
        assert tool.descriptor.security_tier in (SecurityTier.PUBLIC, SecurityTier.INTERNAL)


def test_security_tier_filters_sensitive_tools(engine: ToolPolicyEngine) -> None:
    internal = engine.select_tools(_ctx("critical", "premium", "internal"))
    assert "gmail" not in internal.tool_ids
    assert internal.tool_ids == ["cipher", "context7", "google_drive", "sharepoint"]

    sensitive = engine.select_tools(_ctx("critical", "premium", "sensitive"))
    assert sensitive.tool_ids == [
        "cipher", "context7", "google_drive", "gmail", "sharepoint",
    ]


def test_free_budget_takes_single_best_tool(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("basic", "free", "public"))
    assert result.tool_ids == ["context7"]
    assert result.estimate.total_cost == 0.0
    assert result.estimate.budget_warning is None


def test_public_context_skips_internal_tools_without_stopping(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("critical", "premium", "public"))
    assert result.tool_ids == ["context7"]


def test_unready_tools_are_skipped() -> None:
    registry = ToolRegistry(build_default_catalog())
    readiness = {"cipher": lambda: False, "context7": lambda: True, "google_drive": lambda: True}
    engine = ToolPolicyEngine(registry, default_priority_tables(), readiness)

    result = engine.select_tools(_ctx("premium", "standard", "internal"))
    # sharepoint has no readiness check, so it is treated as not ready
    assert result.tool_ids == ["context7", "google_drive"]


def test_raising_readiness_check_means_not_ready() -> None:
    registry = ToolRegistry(build_default_catalog())

    def broken() -> bool:
        raise RuntimeError("vault unreachable")

    engine = ToolPolicyEngine(
        registry, default_priority_tables(), {"context7": broken, "cipher": lambda: True},
    )
    assert engine.is_tool_ready("context7") is False
    result = engine.select_tools(_ctx("basic", "standard", "internal"))
    assert result.tool_ids == ["cipher"]


def test_unknown_criticality_uses_basic_table(engine: ToolPolicyEngine) -> None:
    context = _ctx("experimental", "standard", "critical")
    assert context.task_criticality == "experimental"

    result = engine.select_tools(context)
    assert result.tool_ids == ["context7", "cipher", "google_drive"]
    # no basic truncation for an unrecognised criticality
    gd = next(t for t in result.tools if t.tool_id == "google_drive")
    assert len(gd.allowed_operations) == 4


def test_priority_ties_follow_declaration_order() -> None:
    registry = ToolRegistry([
        ToolDescriptor("zeta", "Zeta", cost_tier="free", security_tier="public"),
        ToolDescriptor("alpha", "Alpha", cost_tier="free", security_tier="public"),
        ToolDescriptor("mid", "Mid", cost_tier="free", security_tier="public"),
    ])
    priorities = {"basic": {"alpha": 5, "zeta": 5, "mid": 9, "ghost": 7}}
    engine = ToolPolicyEngine(registry, priorities, _all_ready(registry))

    assert [t for t, _ in engine.rank_candidates("basic")] == ["mid", "ghost", "zeta", "alpha"]
    result = engine.select_tools(_ctx("basic", "premium", "public"))
    assert result.tool_ids == ["mid", "zeta", "alpha"]


def test_priorities_require_basic_table() -> None:
    with pytest.raises(ValueError):
        ToolPolicyEngine(ToolRegistry(), {"critical": {}})


# ── Contextual mutation ──


def test_basic_truncates_operations_to_three(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("basic", "premium", "internal"))
    gd = next(t for t in result.tools if t.tool_id == "google_drive")
    assert gd.allowed_operations == ("search", "recent_documents", "fetch")
    # the registry entry is untouched
    assert len(engine.registry.get("google_drive").allowed_operations) == 4


def test_critical_tightens_blanket_never_rule(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("critical", "standard", "internal"))
    context7 = next(t for t in result.tools if t.tool_id == "context7")

    assert context7.approval_rule == ApprovalRuleSet(
        never=("get_library_docs", "resolve_library_id"),
        always=("search_technical_patterns",),
    )
    cipher = next(t for t in result.tools if t.tool_id == "cipher")
    assert cipher.approval_rule == engine.registry.get("cipher").approval_rule


def test_premium_leaves_descriptor_as_is(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("premium", "premium", "internal"))
    for tool in result.tools:
        assert tool.allowed_operations == tool.descriptor.allowed_operations
        assert tool.approval_rule == tool.descriptor.approval_rule


# ── Cost ──


def test_cost_estimate_and_budget_warning(engine: ToolPolicyEngine) -> None:
    result = engine.select_tools(_ctx("critical", "premium", "sensitive"))

    assert result.estimate.total_cost == pytest.approx(0.121)
    costs = {line.tool_id: line.estimated_cost for line in result.estimate.breakdown}
    assert costs["gmail"] == pytest.approx(0.1)
    assert costs["context7"] == 0.0
    assert result.estimate.budget_warning == (
        "High cost estimated: $0.1210. Consider reducing tool usage or "
        "switching to lower-cost alternatives."
    )


def test_estimate_costs_with_custom_call_count(engine: ToolPolicyEngine) -> None:
    descriptors = [engine.registry.get("cipher"), engine.registry.get("google_drive")]
    estimate = engine.estimate_costs(descriptors, estimated_calls=100)
    assert estimate.total_cost == pytest.approx(0.11)
    assert estimate.budget_warning is not None

    small = engine.estimate_costs(descriptors)
    assert small.total_cost == pytest.approx(0.011)
    assert small.budget_warning is None


@pytest.mark.parametrize("budget,cost", [
    ("free", 0.1),
    ("standard", 0.5),
    ("premium", 1.0),
])
def test_selection_cost_capped_by_budget_call_limit(budget: str, cost: float) -> None:
    registry = ToolRegistry([
        ToolDescriptor("search", "Search", cost_tier="high", security_tier="public"),
    ])
    engine = ToolPolicyEngine(
        registry,
        {TaskCriticality.BASIC: {"search": 1}},
        {"search": lambda: True},
        estimated_calls=100,
    )
    result = engine.select_tools(_ctx("basic", budget, "public"))
    assert result.estimate.total_cost == pytest.approx(cost)
    assert (result.estimate.budget_warning is None) == (budget == "free")


# ── Registry management ──


def test_update_descriptor_replaces_atomically(engine: ToolPolicyEngine) -> None:
    before = engine.registry.snapshot()
    updated = engine.update_descriptor("gmail", cost_tier="low")

    assert updated.cost_tier is CostTier.LOW
    assert engine.registry.get("gmail") is updated
    # old snapshot still holds the previous descriptor
    assert before["gmail"].cost_tier is CostTier.HIGH


def test_update_unknown_tool_leaves_registry_unchanged(engine: ToolPolicyEngine) -> None:
    before = engine.registry.snapshot()
    with pytest.raises(UnknownToolError) as exc_info:
        engine.update_descriptor("slack", cost_tier="free")
    assert str(exc_info.value) == "Tool configuration not found: slack"
    assert engine.registry.snapshot() is before


def test_update_descriptor_cannot_rename_tool(engine: ToolPolicyEngine) -> None:
    before = engine.registry.snapshot()
    with pytest.raises(ConfigError):
        engine.update_descriptor("gmail", tool_id="mail")
    assert engine.registry.snapshot() is before
    assert "mail" not in engine.registry


def test_configuration_status_reports_readiness_and_costs() -> None:
    registry = ToolRegistry(build_default_catalog())
    engine = ToolPolicyEngine(
        registry, default_priority_tables(),
        {"context7": lambda: True, "cipher": lambda: True},
    )
    status = engine.configuration_status()

    assert status.total_tools == 5
    assert status.enabled_tools == ["cipher", "context7"]
    assert status.disabled_tools == ["google_drive", "gmail", "sharepoint"]
    assert status.cost_distribution == {"low": 1, "free": 1, "medium": 2, "high": 1}


def test_selection_does_not_touch_registry(engine: ToolPolicyEngine) -> None:
    before = engine.registry.snapshot()
    engine.select_tools(_ctx(TaskCriticality.CRITICAL, BudgetTier.PREMIUM, SecurityTier.CRITICAL))
    assert engine.registry.snapshot() is before
    assert engine.registry.get("context7").approval_rule is ApprovalRequirement.NEVER
