"""Tool selection policy: which external tools a request may use.

Given a RequestContext the engine walks a criticality-specific
priority table, drops tools the request's security tier or the
environment does not allow, stops at the budget tier's tool cap, and
adjusts each accepted tool for the context. Cost is estimated at no
more calls per tool than the budget tier allows.

    basic     allowed operations truncated to the first 3
    critical  a blanket "never" approval rule is tightened so only the
              first 2 allowed operations skip approval

The engine performs no network or credential I/O. Environment
readiness is injected as a mapping of tool id → zero-argument
predicate (see catalog.env_readiness_checks).
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .approval import ApprovalResolver
from .models import (
    COST_PER_CALL,
    ApprovalRequirement,
    ApprovalRuleSet,
    ConfigurationStatus,
    CostEstimate,
    CostLine,
    RequestContext,
    SelectedTool,
    SelectionResult,
    TaskCriticality,
    ToolDescriptor,
)
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

ReadinessCheck = Callable[[], bool]
PriorityTables = Mapping[TaskCriticality, Mapping[str, int]]

BASIC_MAX_OPERATIONS = 3
CRITICAL_UNGATED_OPERATIONS = 2
BUDGET_WARNING_THRESHOLD = 0.1


class ToolPolicyEngine:
    """Selects, caps and adjusts tools per request context."""

    def __init__(
        self,
        registry: ToolRegistry,
        priorities: PriorityTables,
        readiness: Mapping[str, ReadinessCheck] | None = None,
        *,
        estimated_calls: int = 10,
    ) -> None:
        if TaskCriticality.BASIC not in priorities:
            raise ValueError("priority tables must include 'basic'")
        self._registry = registry
        self._priorities = {
            TaskCriticality(k): dict(v) for k, v in priorities.items()
        }
        self._readiness = dict(readiness or {})
        self._estimated_calls = estimated_calls
        self._approvals = ApprovalResolver(registry)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def approvals(self) -> ApprovalResolver:
        return self._approvals

    # ── Selection ─────────────────────────────────────────────────

    def is_tool_ready(self, tool_id: str) -> bool:
        """Evaluate the injected readiness predicate; missing = not ready."""
        check = self._readiness.get(tool_id)
        if check is None:
            return False
        try:
            return bool(check())
        except Exception:
            logger.warning(
                "Readiness check for %s raised, treating as not ready",
                tool_id, exc_info=True,
            )
            return False

    def rank_candidates(
        self,
        task_criticality: TaskCriticality | str,
        declaration_order: Iterable[str] | None = None,
    ) -> list[tuple[str, int]]:
        """Return (tool_id, priority) pairs, best first.

        Unknown criticality uses the basic table. Ties keep registry
        declaration order; ids the registry lacks sort after known ids.
        """
        table = self._priorities.get(task_criticality)
        if table is None:
            logger.debug(
                "No priority table for %r, falling back to basic",
                task_criticality,
            )
            table = self._priorities[TaskCriticality.BASIC]
        order = list(declaration_order if declaration_order is not None
                     else self._registry.list_ids())
        position = {tool_id: i for i, tool_id in enumerate(order)}
        return sorted(
            table.items(),
            key=lambda item: (-item[1], position.get(item[0], len(order))),
        )

    def select_tools(self, context: RequestContext) -> SelectionResult:
        """Pick the tools this request may use, in selection order."""
        max_tools = context.budget_tier.max_tools
        calls = min(self._estimated_calls, context.budget_tier.max_calls)
        tools = self._registry.snapshot()
        logger.info(
            "Selecting tools: criticality=%s budget=%s security=%s max_tools=%d",
            getattr(context.task_criticality, "value", context.task_criticality),
            context.budget_tier.value,
            context.security_tier.value,
            max_tools,
        )

        selected: list[SelectedTool] = []
        for tool_id, priority in self.rank_candidates(
            context.task_criticality, declaration_order=tools,
        ):
            if len(selected) >= max_tools:
                break
            descriptor = tools.get(tool_id)
            if descriptor is None:
                continue
            if descriptor.security_tier.rank > context.security_tier.rank:
                logger.debug(
                    "Tool filtered out by security tier: %s (%s > %s)",
                    tool_id, descriptor.security_tier.value,
                    context.security_tier.value,
                )
                continue
            if not self.is_tool_ready(tool_id):
                logger.debug("Tool skipped, environment not ready: %s", tool_id)
                continue

            choice = self.apply_contextual_mutation(descriptor, context)
            selected.append(choice)
            logger.debug(
                "Tool selected: %s (priority=%d, cost=%s, operations=%d)",
                tool_id, priority, descriptor.cost_tier.value,
                len(choice.allowed_operations),
            )

        estimate = self.estimate_costs(
            [s.descriptor for s in selected], estimated_calls=calls,
        )
        logger.info(
            "Tool selection completed: %s (%d/%d), estimated cost $%.4f",
            ", ".join(s.tool_id for s in selected) or "none",
            len(selected), max_tools, estimate.total_cost,
        )
        return SelectionResult(tools=selected, estimate=estimate, max_tools=max_tools)

    @staticmethod
    def apply_contextual_mutation(
        descriptor: ToolDescriptor,
        context: RequestContext,
    ) -> SelectedTool:
        """Adjust a tool's operations and approval rule for *context*."""
        operations = descriptor.allowed_operations
        rule = descriptor.approval_rule

        if context.task_criticality == TaskCriticality.BASIC:
            operations = operations[:BASIC_MAX_OPERATIONS]
        elif context.task_criticality == TaskCriticality.CRITICAL:
            if rule == ApprovalRequirement.NEVER:
                rule = ApprovalRuleSet(
                    never=operations[:CRITICAL_UNGATED_OPERATIONS],
                    always=operations[CRITICAL_UNGATED_OPERATIONS:],
                )

        return SelectedTool(
            descriptor=descriptor,
            allowed_operations=operations,
            approval_rule=rule,
        )

    # ── Cost ──────────────────────────────────────────────────────

    def estimate_costs(
        self,
        descriptors: Iterable[ToolDescriptor],
        estimated_calls: int | None = None,
    ) -> CostEstimate:
        """Estimate spend for *descriptors* at *estimated_calls* each."""
        calls = self._estimated_calls if estimated_calls is None else estimated_calls
        total = 0.0
        breakdown: list[CostLine] = []
        for descriptor in descriptors:
            cost = COST_PER_CALL[descriptor.cost_tier] * calls
            total += cost
            breakdown.append(CostLine(
                tool_id=descriptor.tool_id,
                label=descriptor.label,
                estimated_cost=cost,
            ))

        warning = None
        if total > BUDGET_WARNING_THRESHOLD:
            warning = (
                f"High cost estimated: ${total:.4f}. Consider reducing tool "
                f"usage or switching to lower-cost alternatives."
            )
            logger.warning(warning)
        return CostEstimate(
            total_cost=round(total, 4),
            breakdown=breakdown,
            budget_warning=warning,
        )

    # ── Registry management ───────────────────────────────────────

    def update_descriptor(self, tool_id: str, /, **changes: Any) -> ToolDescriptor:
        """Merge-replace a descriptor. Raises UnknownToolError if absent."""
        return self._registry.update(tool_id, **changes)

    def configuration_status(self) -> ConfigurationStatus:
        tools = self._registry.snapshot()
        enabled = [tool_id for tool_id in tools if self.is_tool_ready(tool_id)]
        disabled = [tool_id for tool_id in tools if tool_id not in enabled]
        distribution: dict[str, int] = {}
        for descriptor in tools.values():
            tier = descriptor.cost_tier.value
            distribution[tier] = distribution.get(tier, 0) + 1
        return ConfigurationStatus(
            total_tools=len(tools),
            enabled_tools=enabled,
            disabled_tools=disabled,
            cost_distribution=distribution,
        )
