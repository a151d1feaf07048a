"""
Procurement orchestrator: drives one workflow through its six phases.

    initialize_workflow()   seal constraints → ledger create → record (Initialized)
    execute_autonomous_flow()
        1. Discovery    ledger mark → load vendors
        2. Evaluation   oracle scores → validator re-check → ledger commits decision hash
        3. Selection    payment amount computed (once) → ledger records vendor + amount
        4. Payment      budget guard → ledger moves funds → payment reference stored
        5. Settlement   ledger settles exactly the paid amount
        6. Completion   ledger closes the workflow

Each phase awaits its ledger call to finality before the stored record
advances, and the next phase only starts after that. Any failure moves the
workflow to Error with the message preserved, then re-raises. There is no
retry and no rollback: ledger transactions that already landed stay landed.

Execution is claimed per workflow id. A workflow runs at most once; a second
execute (in flight, finished, or failed) raises WorkflowConflictError instead
of submitting duplicate ledger transactions.
"""
import asyncio
import logging
from functools import partial

from autoprocure.catalog import VendorCatalog
from autoprocure.exceptions import (
    ConstraintViolation,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    WorkflowConflictError,
)
from autoprocure.ledger import LedgerAdapter
from autoprocure.models import AgentState, LedgerWorkflow, ProcurementRequest, Vendor, WorkflowRecord
from autoprocure.oracle import ScoringOracle
from autoprocure.scoring import prorated_cost
from autoprocure.sealing import ConstraintSealer
from autoprocure.store import InMemoryWorkflowStore, WorkflowStore
from autoprocure.validator import DecisionValidator

logger = logging.getLogger(__name__)

# Placeholder payee until vendors publish their own settlement addresses.
DEFAULT_PAYEE_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"


class ProcurementOrchestrator:
    def __init__(
        self,
        oracle: ScoringOracle,
        validator: DecisionValidator,
        ledger: LedgerAdapter,
        sealer: ConstraintSealer,
        catalog: VendorCatalog,
        store: WorkflowStore | None = None,
        payee_address: str = DEFAULT_PAYEE_ADDRESS,
    ):
        self._oracle = oracle
        self._validator = validator
        self._ledger = ledger
        self._sealer = sealer
        self._catalog = catalog
        self._store = store if store is not None else InMemoryWorkflowStore()
        self._payee_address = payee_address
        self._claimed: set[int] = set()
        self._tasks: dict[int, asyncio.Task] = {}

    @property
    def catalog(self) -> VendorCatalog:
        return self._catalog

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def initialize_workflow(self, request: ProcurementRequest) -> int:
        """
        Create the workflow on the ledger and store its record in Initialized.

        Nothing is stored if sealing or the ledger call fails.

        Returns:
            int  the workflow id the ledger assigned
        """
        sealed = self._sealer.seal(request.constraints())
        workflow_id = await self._ledger.create_workflow(request.brief, sealed)
        if self._store.get(workflow_id) is not None:
            raise LedgerError(
                f"Ledger issued workflow id {workflow_id}, which is already in use",
                operation="create_workflow",
            )
        self._store.set(WorkflowRecord(
            workflow_id=workflow_id,
            state=AgentState.INITIALIZED,
            request=request,
        ))
        logger.info("Workflow %d initialized: %s", workflow_id, request.brief[:80])
        return workflow_id

    def get_workflow_status(self, workflow_id: int) -> WorkflowRecord | None:
        return self._store.get(workflow_id)

    async def get_ledger_record(self, workflow_id: int) -> LedgerWorkflow:
        """The workflow as the ledger sees it. Budget, quality and SLA are not on it."""
        return await self._ledger.get_workflow(workflow_id)

    def _claim(self, workflow_id: int) -> None:
        record = self._store.get(workflow_id)
        if record is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        if workflow_id in self._claimed or record.state is not AgentState.INITIALIZED:
            raise WorkflowConflictError(
                f"Workflow {workflow_id} has already been executed (state {record.state.value})"
            )
        self._claimed.add(workflow_id)

    async def execute_autonomous_flow(self, workflow_id: int) -> WorkflowRecord:
        """
        Run all six phases in order and return the Completed record.

        Raises:
            NotFoundError          unknown workflow id (record untouched)
            WorkflowConflictError  workflow already claimed (record untouched)
            Exception              whatever failed a phase, after the record
                                   has been moved to Error
        """
        self._claim(workflow_id)
        return await self._run_flow(workflow_id)

    def start_execution(self, workflow_id: int) -> asyncio.Task:
        """
        Claim the workflow and run it as a background task.

        Claiming happens before this returns, so NotFoundError and
        WorkflowConflictError surface to the caller synchronously. Failures
        inside the flow do not: they land in the record's error field and in
        the log, via the task's done callback.
        """
        self._claim(workflow_id)
        task = asyncio.get_running_loop().create_task(
            self._run_flow(workflow_id), name=f"procurement-flow-{workflow_id}",
        )
        self._tasks[workflow_id] = task
        task.add_done_callback(partial(self._on_flow_done, workflow_id))
        return task

    def _on_flow_done(self, workflow_id: int, task: asyncio.Task) -> None:
        self._tasks.pop(workflow_id, None)
        if task.cancelled():
            logger.warning("Background flow for workflow %d was cancelled", workflow_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background flow for workflow %d ended in Error: %s: %s",
                workflow_id, type(exc).__name__, exc,
            )

    async def shutdown(self) -> None:
        """Wait for in-flight flows. There is no cancel: a flow always reaches a terminal state."""
        pending = list(self._tasks.values())
        if pending:
            logger.info("Waiting for %d in-flight workflow(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_flow(self, workflow_id: int) -> WorkflowRecord:
        try:
            vendors = await self._discovery_phase(workflow_id)
            await self._evaluation_phase(workflow_id, vendors)
            await self._selection_phase(workflow_id)
            await self._payment_phase(workflow_id)
            await self._settlement_phase(workflow_id)
            record = await self._completion_phase(workflow_id)
        except Exception as exc:
            logger.error("Workflow %d failed: %s", workflow_id, exc)
            self._fail(workflow_id, exc)
            raise
        logger.info("Workflow %d completed", workflow_id)
        return record

    def _fail(self, workflow_id: int, exc: Exception) -> None:
        try:
            self._store.merge(workflow_id, {"state": AgentState.ERROR, "error": str(exc)})
        except InvalidTransitionError:
            logger.error("Workflow %d is already terminal; error not recorded", workflow_id)

    def _advance(self, workflow_id: int, state: AgentState, **updates) -> WorkflowRecord:
        return self._store.merge(workflow_id, {"state": state, **updates})

    def _record(self, workflow_id: int) -> WorkflowRecord:
        record = self._store.get(workflow_id)
        if record is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return record

    # ── Phases ───────────────────────────────────────────────────────────────

    async def _discovery_phase(self, workflow_id: int) -> list[Vendor]:
        logger.info("[1/6] Discovery phase for workflow %d", workflow_id)
        await self._ledger.mark_discovery_started(workflow_id)
        self._advance(workflow_id, AgentState.DISCOVERY)

        vendors = self._catalog.get_all()
        if not vendors:
            raise ConstraintViolation("No vendors available for evaluation", ["catalog is empty"])
        logger.info("Found %d available vendors", len(vendors))
        return vendors

    async def _evaluation_phase(self, workflow_id: int, vendors: list[Vendor]) -> None:
        logger.info("[2/6] Evaluation phase for workflow %d", workflow_id)
        request = self._record(workflow_id).request

        evaluation = await self._oracle.evaluate(request.brief, vendors, request.criteria())
        decision = self._validator.validate(evaluation.ranked_vendors, request.constraints())
        if not decision.is_valid:
            raise ConstraintViolation(
                f"No valid vendors found: {', '.join(decision.violations)}",
                decision.violations,
            )

        await self._ledger.record_evaluation(workflow_id, decision.decision_hash)
        self._advance(
            workflow_id,
            AgentState.EVALUATION,
            evaluation=evaluation,
            decision=decision,
            selected_vendor_id=decision.selected_vendor.vendor_id,
        )
        logger.info(
            "Selected vendor %s (decision %s)",
            decision.selected_vendor.vendor_name, decision.decision_hash,
        )

    def _selected_vendor(self, record: WorkflowRecord) -> Vendor:
        vendor = self._catalog.get_by_id(record.selected_vendor_id or "")
        if vendor is None:
            raise NotFoundError(f"Selected vendor {record.selected_vendor_id} not found")
        return vendor

    async def _selection_phase(self, workflow_id: int) -> None:
        logger.info("[3/6] Selection phase for workflow %d", workflow_id)
        record = self._record(workflow_id)
        vendor = self._selected_vendor(record)

        # The only place the amount is computed; later phases use the stored value.
        amount = prorated_cost(vendor.price_per_month, record.request.duration_days)
        await self._ledger.record_selection(workflow_id, vendor.id, amount)
        self._advance(workflow_id, AgentState.SELECTION, payment_amount=amount)

    async def _payment_phase(self, workflow_id: int) -> None:
        logger.info("[4/6] Payment phase for workflow %d", workflow_id)
        record = self._record(workflow_id)
        amount = record.payment_amount
        constraints = record.request.constraints()

        if not self._validator.verify_decision(record.selected_vendor_id, amount, constraints):
            raise ConstraintViolation(
                f"Payment amount {amount:g} exceeds budget {constraints.max_budget:g}",
                [f"payment {amount:g} > budget {constraints.max_budget:g}"],
            )

        tx_ref = await self._ledger.execute_payment(workflow_id, self._payee_address, amount)
        self._advance(workflow_id, AgentState.PAYMENT_PENDING, payment_tx_hash=tx_ref)
        logger.info("Payment executed for workflow %d: %s", workflow_id, tx_ref)

    async def _settlement_phase(self, workflow_id: int) -> None:
        logger.info("[5/6] Settlement phase for workflow %d", workflow_id)
        record = self._record(workflow_id)
        await self._ledger.finalize_settlement(
            workflow_id, record.payment_tx_hash, record.payment_amount,
        )
        self._advance(workflow_id, AgentState.SETTLED)

    async def _completion_phase(self, workflow_id: int) -> WorkflowRecord:
        logger.info("[6/6] Completion phase for workflow %d", workflow_id)
        await self._ledger.complete_workflow(workflow_id)
        return self._advance(workflow_id, AgentState.COMPLETED)
