"""autoprocure: autonomous vendor procurement with validated, ledger-anchored decisions."""

from autoprocure.catalog import VendorCatalog, load_default_catalog
from autoprocure.ledger import LedgerAdapter, SimulatedLedger
from autoprocure.models import (
    AgentState,
    DecisionConstraints,
    EvaluationCriteria,
    EvaluationResult,
    ProcurementRequest,
    ValidationResult,
    Vendor,
    VendorScore,
    WorkflowRecord,
)
from autoprocure.oracle import ScoringOracle
from autoprocure.orchestrator import ProcurementOrchestrator
from autoprocure.sealing import ConstraintSealer
from autoprocure.store import InMemoryWorkflowStore, WorkflowStore
from autoprocure.validator import DecisionValidator

__all__ = [
    "AgentState",
    "ConstraintSealer",
    "DecisionConstraints",
    "DecisionValidator",
    "EvaluationCriteria",
    "EvaluationResult",
    "InMemoryWorkflowStore",
    "LedgerAdapter",
    "ProcurementOrchestrator",
    "ProcurementRequest",
    "ScoringOracle",
    "SimulatedLedger",
    "ValidationResult",
    "Vendor",
    "VendorCatalog",
    "VendorScore",
    "WorkflowRecord",
    "WorkflowStore",
    "load_default_catalog",
]
