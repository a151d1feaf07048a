"""
autoprocure data models.

Every object that crosses a component boundary is one of these Pydantic
models. Python attributes are snake_case; the JSON wire form is camelCase
(maxBudget, rankedVendors, workflowId ...) through the shared alias
generator, and both spellings are accepted on input.

Records are frozen. Changing a WorkflowRecord means asking for a new one via
merged(), which is also where the state machine rules live:

    Idle → Initialized → Discovery → Evaluation → Selection
         → PaymentPending → Settled → Completed
    any non-terminal state → Error

A state only ever moves forward (skipping is allowed, regressing is not) and
selected_vendor_id, once set, cannot be changed to a different vendor.
"""
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from autoprocure.exceptions import InvalidTransitionError


def utc_now() -> str:
    """ISO-8601 UTC timestamp, the single format used across records."""
    return datetime.now(timezone.utc).isoformat()


class ApiModel(BaseModel):
    """Base for all models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class FrozenApiModel(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ── State machine ────────────────────────────────────────────────────────────

class AgentState(str, Enum):
    IDLE = "Idle"
    INITIALIZED = "Initialized"
    DISCOVERY = "Discovery"
    EVALUATION = "Evaluation"
    SELECTION = "Selection"
    PAYMENT_PENDING = "PaymentPending"
    SETTLED = "Settled"
    COMPLETED = "Completed"
    ERROR = "Error"

    @property
    def code(self) -> int:
        """Numeric code used for this state in the on-ledger record."""
        return _STATE_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> "AgentState":
        for state, state_code in _STATE_CODES.items():
            if state_code == code:
                return state
        raise ValueError(f"Unknown ledger state code: {code}")

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.COMPLETED, AgentState.ERROR)

    def can_advance_to(self, new_state: "AgentState") -> bool:
        if self.is_terminal:
            return False
        if new_state is AgentState.ERROR:
            return True
        return PHASE_ORDER.index(new_state) > PHASE_ORDER.index(self)


PHASE_ORDER = [
    AgentState.IDLE,
    AgentState.INITIALIZED,
    AgentState.DISCOVERY,
    AgentState.EVALUATION,
    AgentState.SELECTION,
    AgentState.PAYMENT_PENDING,
    AgentState.SETTLED,
    AgentState.COMPLETED,
]

_STATE_CODES = {state: i for i, state in enumerate(PHASE_ORDER)}
_STATE_CODES[AgentState.ERROR] = len(PHASE_ORDER)


# ── Request side ─────────────────────────────────────────────────────────────

class DecisionConstraints(FrozenApiModel):
    """The hard numeric limits a selection must respect. Sealed before it reaches the ledger."""
    max_budget: float = Field(gt=0)
    min_quality_score: float = Field(default=7.0, ge=0, le=10)
    preferred_sla: float = Field(default=99.0, ge=0, le=100, alias="preferredSLA")


class EvaluationCriteria(DecisionConstraints):
    """Constraints plus the contract duration the cost formula needs."""
    duration_days: int = Field(default=30, gt=0)


class ProcurementRequest(FrozenApiModel):
    """
    What the caller asks for. Immutable once the workflow is created.

    Fields:
        brief              free-text description of the service wanted
        max_budget         total budget for the whole duration, not per month
        min_quality_score  0-10 floor on the vendor's quality score
        preferred_sla      0-100 uptime percentage the caller would like
        duration_days      contract length; cost is prorated from a 30-day month
    """
    brief: str
    max_budget: float = Field(gt=0)
    min_quality_score: float = Field(default=7.0, ge=0, le=10)
    preferred_sla: float = Field(default=99.0, ge=0, le=100, alias="preferredSLA")
    duration_days: int = Field(default=30, gt=0)

    @field_validator("brief")
    @classmethod
    def _brief_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("brief must not be blank")
        return value

    def constraints(self) -> DecisionConstraints:
        return DecisionConstraints(
            max_budget=self.max_budget,
            min_quality_score=self.min_quality_score,
            preferred_sla=self.preferred_sla,
        )

    def criteria(self) -> EvaluationCriteria:
        return EvaluationCriteria(
            max_budget=self.max_budget,
            min_quality_score=self.min_quality_score,
            preferred_sla=self.preferred_sla,
            duration_days=self.duration_days,
        )


# ── Catalog and scoring ──────────────────────────────────────────────────────

class Vendor(FrozenApiModel):
    id: str
    name: str
    description: str
    service_type: str
    price_per_month: float = Field(gt=0)
    sla: float = Field(ge=0, le=100)
    reputation_score: float = Field(ge=0, le=10)
    features: tuple[str, ...] = ()
    contact_email: str


class VendorScore(FrozenApiModel):
    """
    One vendor's score from the oracle (or the fallback scorer).

    meets_constraints is only meaningful after it has been recomputed from
    catalog data; whatever the oracle claimed for it is discarded.
    """
    vendor_id: str
    vendor_name: str
    cost_score: float = Field(ge=0, le=10)
    quality_score: float = Field(ge=0, le=10)
    sla_score: float = Field(ge=0, le=10)
    total_score: float = Field(ge=0, le=10)
    reasoning: str
    meets_constraints: bool


class EvaluationResult(FrozenApiModel):
    # Descending by total_score. Consumers rely on this order.
    ranked_vendors: list[VendorScore]
    recommendation: str
    timestamp: str = Field(default_factory=utc_now)


class ValidationResult(FrozenApiModel):
    is_valid: bool
    selected_vendor: VendorScore | None = None
    violations: list[str] = Field(default_factory=list)
    decision_hash: str
    # The instant folded into decision_hash; needed to recompute it later.
    decided_at: str


# ── Workflow ─────────────────────────────────────────────────────────────────

class WorkflowRecord(FrozenApiModel):
    """
    The orchestrator's authoritative view of one workflow.

    Only the orchestrator produces new versions, one merged() call per phase
    transition. The ledger never sees budget, quality or SLA; those live here
    and (sealed) in the creation transaction only.
    """
    workflow_id: int
    state: AgentState
    request: ProcurementRequest
    evaluation: EvaluationResult | None = None
    # The validator's committed decision (hash, capture time, violations).
    decision: ValidationResult | None = None
    selected_vendor_id: str | None = None
    # Computed once at Selection and reused by Payment and Settlement.
    payment_amount: float | None = None
    payment_tx_hash: str | None = None
    error: str | None = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    def merged(self, updates: dict) -> "WorkflowRecord":
        """
        Return a new record with `updates` applied, enforcing the transition rules.

        Raises:
            InvalidTransitionError  if updates["state"] is not reachable from the
                                    current state, or selected_vendor_id would change
        """
        new_state = updates.get("state")
        if new_state is not None and new_state != self.state:
            if not self.state.can_advance_to(new_state):
                raise InvalidTransitionError(
                    f"Workflow {self.workflow_id} cannot move from "
                    f"{self.state.value} to {AgentState(new_state).value}"
                )
        new_vendor = updates.get("selected_vendor_id")
        if (
            new_vendor is not None
            and self.selected_vendor_id is not None
            and new_vendor != self.selected_vendor_id
        ):
            raise InvalidTransitionError(
                f"Workflow {self.workflow_id} already selected {self.selected_vendor_id}"
            )
        return self.model_copy(update={**updates, "updated_at": utc_now()})


# ── Ledger side ──────────────────────────────────────────────────────────────

class LedgerEvent(FrozenApiModel):
    name: str
    args: dict = Field(default_factory=dict)


class TxReceipt(FrozenApiModel):
    """Result of one ledger transaction after it reached finality."""
    tx_hash: str
    block_number: int
    success: bool
    revert_reason: str | None = None
    events: list[LedgerEvent] = Field(default_factory=list)

    def event(self, name: str) -> LedgerEvent | None:
        for event in self.events:
            if event.name == name:
                return event
        return None


class LedgerWorkflow(FrozenApiModel):
    """
    The workflow as the ledger stores it.

    Partial: budget, quality and SLA are sealed off-chain, so a
    record rebuilt from this alone is missing them.
    """
    workflow_id: int
    state: int
    procurement_brief: str
    selected_vendor_id: str = ""
    payment_tx_hash: str = ""
    decision_hash: str = ""
    payment_amount_units: int = 0

    @property
    def agent_state(self) -> AgentState:
        return AgentState.from_code(self.state)
