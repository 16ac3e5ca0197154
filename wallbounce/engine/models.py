"""Core data models for the consultation engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .conditions import Condition


class CostTier(str, Enum):
    """Per-call cost classification of an external tool."""
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SecurityTier(str, Enum):
    """Ordinal sensitivity classification. Declaration order is rank."""
    PUBLIC = "public"
    INTERNAL = "internal"
    SENSITIVE = "sensitive"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SECURITY_ORDER.index(self)


_SECURITY_ORDER = list(SecurityTier)


class TaskCriticality(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _CRITICALITY_ORDER.index(self)


_CRITICALITY_ORDER = list(TaskCriticality)
_CRITICALITY_VALUES = {c.value for c in TaskCriticality}


class BudgetTier(str, Enum):
    """Caller-assigned spending category."""
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _BUDGET_ORDER.index(self)

    @property
    def max_tools(self) -> int:
        return BUDGET_LIMITS[self].max_tools

    @property
    def max_calls(self) -> int:
        return BUDGET_LIMITS[self].max_calls


_BUDGET_ORDER = list(BudgetTier)


@dataclass(frozen=True)
class BudgetLimits:
    max_tools: int
    max_calls: int


BUDGET_LIMITS: dict[BudgetTier, BudgetLimits] = {
    BudgetTier.FREE: BudgetLimits(max_tools=1, max_calls=10),
    BudgetTier.STANDARD: BudgetLimits(max_tools=3, max_calls=50),
    BudgetTier.PREMIUM: BudgetLimits(max_tools=10, max_calls=200),
}

# USD per call, by cost tier.
COST_PER_CALL: dict[CostTier, float] = {
    CostTier.FREE: 0.0,
    CostTier.LOW: 0.0001,
    CostTier.MEDIUM: 0.001,
    CostTier.HIGH: 0.01,
}


class ApprovalRequirement(str, Enum):
    """Whether an operation must be approved before execution."""
    ALWAYS = "always"
    NEVER = "never"


class ParseDegradation(str, Enum):
    """Non-fatal quality downgrades recorded while parsing CLI output."""
    TEXT_FROM_DELIMITERS = "text_from_delimiters"
    TEXT_RAW = "text_raw"
    USAGE_ESTIMATED = "usage_estimated"


def _make_id() -> str:
    return str(uuid.uuid4())


# ── Process supervision ─────────────────────────────────────────


@dataclass(frozen=True)
class TimeoutPolicy:
    """Two-phase timeout policy for a supervised process.

    ``None`` means unbounded: the corresponding timer is never armed.
    """
    time_to_first_byte: float | None = 600.0
    inactivity_gap: float | None = 90.0

    @classmethod
    def unbounded(cls) -> TimeoutPolicy:
        return cls(time_to_first_byte=None, inactivity_gap=None)

    @classmethod
    def from_seconds(
        cls,
        time_to_first_byte: float | None,
        inactivity_gap: float | None,
    ) -> TimeoutPolicy:
        """Build a policy where ``None`` or values <= 0 disable a timer."""
        def _norm(value: float | None) -> float | None:
            if value is None or value <= 0:
                return None
            return float(value)

        return cls(
            time_to_first_byte=_norm(time_to_first_byte),
            inactivity_gap=_norm(inactivity_gap),
        )


@dataclass
class InvocationRequest:
    """One external command invocation.

    When ``stage_input`` is set, the prompt is also written to a scratch
    file and any ``{input_path}`` placeholder in ``command`` is replaced
    with that file's path.
    """
    command: list[str]
    prompt: str = ""
    env: dict[str, str] = field(default_factory=dict)
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    stage_input: bool = False
    cwd: str | None = None
    request_id: str = field(default_factory=_make_id)


@dataclass(frozen=True)
class AgentMessage:
    text: str


@dataclass(frozen=True)
class TokenUsageEvent:
    input: int
    output: int
    total: int


@dataclass(frozen=True)
class UnknownEvent:
    raw_line: str


StreamEvent = Union[AgentMessage, TokenUsageEvent, UnknownEvent]


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0
    exact: bool = False


@dataclass
class ParsedOutput:
    extracted_text: str
    token_usage: TokenUsage
    degradations: list[ParseDegradation] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degradations)


@dataclass
class InvocationResult:
    """Outcome of a successful supervision."""
    raw_output: str
    extracted_text: str
    token_usage: TokenUsage
    processing_duration: float
    exit_status: int = 0
    degradations: list[ParseDegradation] = field(default_factory=list)
    request_id: str = ""


# ── Tool policy ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ConditionalApproval:
    """Operations whose approval depends on a declarative condition."""
    operations: tuple[str, ...]
    condition: Condition


@dataclass(frozen=True)
class ApprovalRuleSet:
    """Structured approval rule.

    Lists need not be disjoint; the resolver checks never → always →
    conditional in that order.
    """
    never: tuple[str, ...] = ()
    always: tuple[str, ...] = ()
    conditional: ConditionalApproval | None = None


ApprovalRule = Union[ApprovalRequirement, ApprovalRuleSet]


@dataclass(frozen=True)
class ToolDescriptor:
    """Static description of a pluggable external tool."""
    tool_id: str
    label: str
    allowed_operations: tuple[str, ...] = ()
    cost_tier: CostTier = CostTier.MEDIUM
    security_tier: SecurityTier = SecurityTier.INTERNAL
    approval_rule: ApprovalRule = ApprovalRequirement.ALWAYS
    server_url: str | None = None
    connector_id: str | None = None

    def __post_init__(self) -> None:
        # Accept plain strings/lists from YAML and callers.
        object.__setattr__(self, "cost_tier", CostTier(self.cost_tier))
        object.__setattr__(self, "security_tier", SecurityTier(self.security_tier))
        object.__setattr__(
            self, "allowed_operations", tuple(self.allowed_operations),
        )
        if isinstance(self.approval_rule, str):
            object.__setattr__(
                self, "approval_rule", ApprovalRequirement(self.approval_rule),
            )


@dataclass(frozen=True)
class RequestContext:
    # Unrecognised criticality strings are kept as-is; the policy
    # engine treats them as basic.
    task_criticality: TaskCriticality | str = TaskCriticality.BASIC
    budget_tier: BudgetTier = BudgetTier.FREE
    security_tier: SecurityTier = SecurityTier.PUBLIC
    user_role: str | None = None
    project_id: str | None = None

    def __post_init__(self) -> None:
        if self.task_criticality in _CRITICALITY_VALUES:
            object.__setattr__(
                self, "task_criticality", TaskCriticality(self.task_criticality),
            )
        object.__setattr__(self, "budget_tier", BudgetTier(self.budget_tier))
        object.__setattr__(self, "security_tier", SecurityTier(self.security_tier))


@dataclass(frozen=True)
class SelectedTool:
    """A tool accepted by the policy engine, after contextual mutation."""
    descriptor: ToolDescriptor
    allowed_operations: tuple[str, ...]
    approval_rule: ApprovalRule

    @property
    def tool_id(self) -> str:
        return self.descriptor.tool_id


@dataclass(frozen=True)
class CostLine:
    tool_id: str
    label: str
    estimated_cost: float


@dataclass
class CostEstimate:
    total_cost: float
    breakdown: list[CostLine] = field(default_factory=list)
    budget_warning: str | None = None


@dataclass
class SelectionResult:
    tools: list[SelectedTool]
    estimate: CostEstimate
    max_tools: int

    @property
    def tool_ids(self) -> list[str]:
        return [t.tool_id for t in self.tools]


@dataclass
class ConfigurationStatus:
    total_tools: int
    enabled_tools: list[str]
    disabled_tools: list[str]
    cost_distribution: dict[str, int]
