"""Per-operation approval resolution.

Precedence for structured rules is fixed: never-list, then
always-list, then conditional-list. Anything unmatched, and any tool
the registry does not know, requires approval.
"""
from __future__ import annotations

import logging

from .models import (
    ApprovalRequirement,
    ApprovalRule,
    ApprovalRuleSet,
    RequestContext,
    SelectedTool,
)
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


def resolve_rule(
    rule: ApprovalRule,
    operation: str,
    context: RequestContext,
) -> ApprovalRequirement:
    """Resolve *operation* against a single approval rule."""
    if isinstance(rule, ApprovalRequirement):
        return rule
    if not isinstance(rule, ApprovalRuleSet):
        logger.warning("Unrecognised approval rule %r, requiring approval", rule)
        return ApprovalRequirement.ALWAYS

    if operation in rule.never:
        return ApprovalRequirement.NEVER
    if operation in rule.always:
        return ApprovalRequirement.ALWAYS

    conditional = rule.conditional
    if conditional is not None and operation in conditional.operations:
        try:
            required = conditional.condition.evaluate(context)
        except Exception:
            logger.warning(
                "Approval condition failed for operation %s, requiring approval",
                operation, exc_info=True,
            )
            return ApprovalRequirement.ALWAYS
        return ApprovalRequirement.ALWAYS if required else ApprovalRequirement.NEVER

    return ApprovalRequirement.ALWAYS


class ApprovalResolver:
    """Resolves approval requirements against the tool registry."""

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    def resolve(
        self,
        tool_id: str,
        operation: str,
        context: RequestContext,
    ) -> ApprovalRequirement:
        """Return whether *operation* on *tool_id* needs approval."""
        descriptor = self._registry.get(tool_id)
        if descriptor is None:
            logger.debug("Approval for unknown tool %s defaults to always", tool_id)
            return ApprovalRequirement.ALWAYS
        requirement = resolve_rule(descriptor.approval_rule, operation, context)
        logger.debug(
            "Approval resolved: tool=%s operation=%s -> %s",
            tool_id, operation, requirement.value,
        )
        return requirement

    @staticmethod
    def resolve_selected(
        selected: SelectedTool,
        operation: str,
        context: RequestContext,
    ) -> ApprovalRequirement:
        """Resolve against the contextually mutated rule of a selection."""
        return resolve_rule(selected.approval_rule, operation, context)
