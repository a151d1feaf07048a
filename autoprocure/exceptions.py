"""
Exception hierarchy for autoprocure.

Every failure a caller can observe is a ProcurementError subclass, so the
HTTP layer can map the whole family to status codes in one place:

    InvalidRequestError    → 400
    NotFoundError          → 404
    WorkflowConflictError  → 409
    everything else        → recorded on the workflow, surfaced via polling

Collaborator failures (oracle transport, ledger RPC, cipher) are wrapped into
these at the adapter seam with `raise ... from exc`, so the original cause
stays on __cause__ for diagnostics.
"""


class ProcurementError(Exception):
    """Base class for all autoprocure errors."""


class InvalidRequestError(ProcurementError):
    """Caller input is missing or malformed. Never retried."""


class NotFoundError(ProcurementError):
    """Unknown workflow id or vendor id."""


class WorkflowConflictError(ProcurementError):
    """A workflow was asked to execute twice, or from a state other than Initialized."""


class InvalidTransitionError(ProcurementError):
    """A record update would regress the state machine or reselect the vendor."""


class OracleError(ProcurementError):
    """The scoring oracle was unreachable or returned data that could not be used."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class ConstraintViolation(ProcurementError):
    """No scored vendor survived hard-constraint filtering, or a payment guard failed."""

    def __init__(self, message: str, violations: list[str] | None = None):
        super().__init__(message)
        self.violations = list(violations or [])


class LedgerError(ProcurementError):
    """A ledger submission failed, reverted, or did not emit its expected event."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        tx_hash: str | None = None,
        revert_reason: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class SealError(ProcurementError):
    """A sealed constraint blob failed authentication or could not be decoded."""
