"""
Ledger adapter: one awaited, finality-confirmed call per workflow transition.

LedgerAdapter owns everything the orchestrator relies on: the phase
operations, amount scaling, and turning every way a transaction can go wrong
into a LedgerError. Subclasses only provide the transport:

    _submit(method, params, value) -> TxReceipt   send, wait for finality
    _read_workflow(workflow_id) -> LedgerWorkflow | None

A call fails if the transport is unreachable (OSError), the transaction
reverts, or its receipt lacks the event the operation expects. The adapter
never retries: a submitted transaction may have landed, so retrying is the
caller's decision, and the orchestrator's decision is to stop.

Amount scaling
--------------
Nominal currency amounts become native ledger units as
amount / amount_scale * 10**18, computed with Decimal and rounded half-up.
The same conversion is used for selection, payment and settlement, so the
settled amount always equals the paid amount for the same nominal input.

SimulatedLedger is an in-process implementation of the workflow, payment and
settlement contracts. It is what the server runs against until a real chain
transport is configured, and what the tests use, with failure injection.
"""
import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal

from autoprocure.exceptions import LedgerError, NotFoundError
from autoprocure.models import AgentState, LedgerEvent, LedgerWorkflow, TxReceipt

logger = logging.getLogger(__name__)

NATIVE_UNITS_PER_TOKEN = 10 ** 18
DEFAULT_AMOUNT_SCALE = 10_000


class LedgerAdapter(ABC):
    def __init__(self, amount_scale: float = DEFAULT_AMOUNT_SCALE):
        if amount_scale <= 0:
            raise ValueError(f"amount_scale must be positive, got {amount_scale}")
        self._amount_scale = Decimal(str(amount_scale))

    @property
    def amount_scale(self) -> Decimal:
        return self._amount_scale

    def to_native_units(self, amount: float) -> int:
        scaled = Decimal(str(amount)) / self._amount_scale * NATIVE_UNITS_PER_TOKEN
        return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))

    # ── Transport (subclass responsibility) ──────────────────────────────────

    @abstractmethod
    async def _submit(self, method: str, params: dict, value: int = 0) -> TxReceipt:
        """Send one state-changing call and return its receipt once final."""

    @abstractmethod
    async def _read_workflow(self, workflow_id: int) -> LedgerWorkflow | None:
        """Read the on-ledger workflow record, None if it does not exist."""

    async def _transact(
        self,
        operation: str,
        method: str,
        params: dict,
        expected_event: str,
        value: int = 0,
    ) -> LedgerEvent:
        try:
            receipt = await self._submit(method, params, value)
        except OSError as exc:
            raise LedgerError(
                f"Ledger unreachable during {operation}: {exc}", operation=operation
            ) from exc

        if not receipt.success:
            raise LedgerError(
                f"{operation} reverted: {receipt.revert_reason or 'no reason given'}",
                operation=operation,
                tx_hash=receipt.tx_hash,
                revert_reason=receipt.revert_reason,
            )
        event = receipt.event(expected_event)
        if event is None:
            raise LedgerError(
                f"{operation}: expected event {expected_event} missing from tx {receipt.tx_hash}",
                operation=operation,
                tx_hash=receipt.tx_hash,
            )
        logger.debug(
            "%s confirmed in block %d (tx %s)", method, receipt.block_number, receipt.tx_hash
        )
        return event

    # ── Phase operations ─────────────────────────────────────────────────────

    async def create_workflow(self, brief: str, sealed_constraints: bytes) -> int:
        """Create the on-ledger workflow; the ledger assigns and returns its id."""
        event = await self._transact(
            "create_workflow",
            "create_workflow",
            {"brief": brief, "sealed_constraints": "0x" + sealed_constraints.hex()},
            "WorkflowCreated",
        )
        try:
            return int(event.args["workflowId"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerError(
                "create_workflow: WorkflowCreated event has no usable workflowId",
                operation="create_workflow",
            ) from exc

    async def mark_discovery_started(self, workflow_id: int) -> None:
        await self._transact(
            "mark_discovery_started", "start_discovery",
            {"workflow_id": workflow_id}, "DiscoveryStarted",
        )

    async def record_evaluation(self, workflow_id: int, decision_hash: str) -> None:
        await self._transact(
            "record_evaluation", "start_evaluation",
            {"workflow_id": workflow_id, "decision_hash": decision_hash}, "EvaluationStarted",
        )

    async def record_selection(self, workflow_id: int, vendor_id: str, amount: float) -> None:
        await self._transact(
            "record_selection", "select_vendor",
            {"workflow_id": workflow_id, "vendor_id": vendor_id,
             "amount": self.to_native_units(amount)},
            "VendorSelected",
        )

    async def execute_payment(self, workflow_id: int, payee_address: str, amount: float) -> str:
        """
        Move the funds and attach the payment to the workflow.

        Three transactions, each awaited: initiate (returns the payment
        reference), execute the transfer, record it on the workflow.

        Returns:
            str  the payment reference from the PaymentInitiated event
        """
        units = self.to_native_units(amount)
        initiated = await self._transact(
            "execute_payment", "initiate_payment",
            {"workflow_id": workflow_id, "payee": payee_address, "amount": units},
            "PaymentInitiated",
            value=units,
        )
        payment_ref = initiated.args.get("txHash")
        if not payment_ref:
            raise LedgerError(
                "execute_payment: PaymentInitiated event has no txHash",
                operation="execute_payment",
            )
        await self._transact(
            "execute_payment", "execute_transfer",
            {"payment_ref": payment_ref}, "PaymentExecuted",
        )
        await self._transact(
            "execute_payment", "record_payment",
            {"workflow_id": workflow_id, "payment_ref": payment_ref}, "PaymentRecorded",
        )
        return payment_ref

    async def finalize_settlement(self, workflow_id: int, payment_ref: str, amount: float) -> None:
        await self._transact(
            "finalize_settlement", "initiate_settlement",
            {"workflow_id": workflow_id, "payment_ref": payment_ref,
             "amount": self.to_native_units(amount)},
            "SettlementInitiated",
        )
        await self._transact(
            "finalize_settlement", "finalize_escrow",
            {"workflow_id": workflow_id}, "SettlementFinalized",
        )
        await self._transact(
            "finalize_settlement", "record_settlement",
            {"workflow_id": workflow_id}, "WorkflowSettled",
        )

    async def complete_workflow(self, workflow_id: int) -> None:
        await self._transact(
            "complete_workflow", "complete_workflow",
            {"workflow_id": workflow_id}, "WorkflowCompleted",
        )

    async def get_workflow(self, workflow_id: int) -> LedgerWorkflow:
        try:
            record = await self._read_workflow(workflow_id)
        except OSError as exc:
            raise LedgerError(
                f"Ledger unreachable reading workflow {workflow_id}: {exc}",
                operation="get_workflow",
            ) from exc
        if record is None:
            raise NotFoundError(f"Workflow {workflow_id} not found on ledger")
        return record


class _Revert(Exception):
    """Raised inside simulated contract methods; becomes a failed receipt."""


class SimulatedLedger(LedgerAdapter):
    """
    In-process append-only ledger emulating the procurement contracts.

    Contract rules enforced here mirror the on-chain ones: phases must be
    called in order, payments must be executed before they are recorded, and
    a settlement must be for exactly the paid amount.

    Failure injection (tests and demos):
        revert_on     method names whose transactions revert
        omit_events   method names whose receipts come back without events
        unreachable   every call raises ConnectionError before submission
    """

    def __init__(
        self,
        amount_scale: float = DEFAULT_AMOUNT_SCALE,
        block_time: float = 0.0,
        revert_on=(),
        omit_events=(),
        unreachable: bool = False,
    ):
        super().__init__(amount_scale=amount_scale)
        self._block_time = block_time
        self.revert_on = set(revert_on)
        self.omit_events = set(omit_events)
        self.unreachable = unreachable
        self.transactions: list[dict] = []
        self._workflows: dict[int, dict] = {}
        self._payments: dict[str, dict] = {}
        self._settlements: dict[int, dict] = {}
        self._next_workflow_id = 1

    def methods_called(self) -> list[str]:
        return [tx["method"] for tx in self.transactions if tx["receipt"].success]

    async def _submit(self, method: str, params: dict, value: int = 0) -> TxReceipt:
        if self.unreachable:
            raise ConnectionError("ledger RPC endpoint unreachable")
        # Finality: nothing is visible until the block is sealed.
        await asyncio.sleep(self._block_time)

        block_number = len(self.transactions) + 1
        tx_hash = self._hash("tx", block_number, method, params, value)
        handler = getattr(self, f"_op_{method}", None)

        events: list[LedgerEvent] = []
        revert_reason = None
        if method in self.revert_on:
            revert_reason = f"{method}: execution reverted"
        elif handler is None:
            revert_reason = f"unknown method {method}"
        else:
            try:
                events = handler(block_number=block_number, value=value, **params)
            except _Revert as exc:
                revert_reason = str(exc)
        if method in self.omit_events:
            events = []

        receipt = TxReceipt(
            tx_hash=tx_hash,
            block_number=block_number,
            success=revert_reason is None,
            revert_reason=revert_reason,
            events=events if revert_reason is None else [],
        )
        self.transactions.append({"method": method, "params": dict(params), "receipt": receipt})
        return receipt

    async def _read_workflow(self, workflow_id: int) -> LedgerWorkflow | None:
        if self.unreachable:
            raise ConnectionError("ledger RPC endpoint unreachable")
        record = self._workflows.get(workflow_id)
        if record is None:
            return None
        return LedgerWorkflow(
            workflow_id=workflow_id,
            state=record["state"],
            procurement_brief=record["brief"],
            selected_vendor_id=record["vendor_id"],
            payment_tx_hash=record["payment_ref"],
            decision_hash=record["decision_hash"],
            payment_amount_units=record["amount"],
        )

    @staticmethod
    def _hash(*parts) -> str:
        material = json.dumps(parts, sort_keys=True, default=str)
        return "0x" + hashlib.sha256(material.encode("utf-8")).hexdigest()

    def _require_state(self, workflow_id: int, expected: AgentState) -> dict:
        record = self._workflows.get(workflow_id)
        if record is None:
            raise _Revert(f"workflow {workflow_id} does not exist")
        if record["state"] != expected.code:
            current = AgentState.from_code(record["state"]).value
            raise _Revert(f"workflow {workflow_id} is {current}, expected {expected.value}")
        return record

    # ── Workflow contract ────────────────────────────────────────────────────

    def _op_create_workflow(self, block_number, value, brief, sealed_constraints):
        workflow_id = self._next_workflow_id
        self._next_workflow_id += 1
        self._workflows[workflow_id] = {
            "state": AgentState.INITIALIZED.code,
            "brief": brief,
            "sealed": sealed_constraints,
            "vendor_id": "",
            "payment_ref": "",
            "decision_hash": "",
            "amount": 0,
        }
        return [LedgerEvent(name="WorkflowCreated", args={"workflowId": workflow_id})]

    def _op_start_discovery(self, block_number, value, workflow_id):
        record = self._require_state(workflow_id, AgentState.INITIALIZED)
        record["state"] = AgentState.DISCOVERY.code
        return [LedgerEvent(name="DiscoveryStarted", args={"workflowId": workflow_id})]

    def _op_start_evaluation(self, block_number, value, workflow_id, decision_hash):
        record = self._require_state(workflow_id, AgentState.DISCOVERY)
        record["state"] = AgentState.EVALUATION.code
        record["decision_hash"] = decision_hash
        return [LedgerEvent(
            name="EvaluationStarted",
            args={"workflowId": workflow_id, "decisionHash": decision_hash},
        )]

    def _op_select_vendor(self, block_number, value, workflow_id, vendor_id, amount):
        record = self._require_state(workflow_id, AgentState.EVALUATION)
        record["state"] = AgentState.SELECTION.code
        record["vendor_id"] = vendor_id
        record["amount"] = amount
        return [LedgerEvent(
            name="VendorSelected",
            args={"workflowId": workflow_id, "vendorId": vendor_id, "amount": amount},
        )]

    def _op_record_payment(self, block_number, value, workflow_id, payment_ref):
        record = self._require_state(workflow_id, AgentState.SELECTION)
        payment = self._payments.get(payment_ref)
        if payment is None or payment["workflow_id"] != workflow_id:
            raise _Revert(f"payment {payment_ref} does not belong to workflow {workflow_id}")
        if not payment["executed"]:
            raise _Revert(f"payment {payment_ref} has not been executed")
        record["state"] = AgentState.PAYMENT_PENDING.code
        record["payment_ref"] = payment_ref
        return [LedgerEvent(
            name="PaymentRecorded", args={"workflowId": workflow_id, "txHash": payment_ref},
        )]

    def _op_record_settlement(self, block_number, value, workflow_id):
        record = self._require_state(workflow_id, AgentState.PAYMENT_PENDING)
        settlement = self._settlements.get(workflow_id)
        if settlement is None or not settlement["finalized"]:
            raise _Revert(f"settlement for workflow {workflow_id} is not finalized")
        record["state"] = AgentState.SETTLED.code
        return [LedgerEvent(name="WorkflowSettled", args={"workflowId": workflow_id})]

    def _op_complete_workflow(self, block_number, value, workflow_id):
        record = self._require_state(workflow_id, AgentState.SETTLED)
        record["state"] = AgentState.COMPLETED.code
        return [LedgerEvent(name="WorkflowCompleted", args={"workflowId": workflow_id})]

    # ── Payment contract ─────────────────────────────────────────────────────

    def _op_initiate_payment(self, block_number, value, workflow_id, payee, amount):
        self._require_state(workflow_id, AgentState.SELECTION)
        if value != amount:
            raise _Revert(f"attached value {value} does not match amount {amount}")
        payment_ref = self._hash("payment", workflow_id, payee, amount, block_number)
        self._payments[payment_ref] = {
            "workflow_id": workflow_id,
            "payee": payee,
            "amount": amount,
            "executed": False,
        }
        return [LedgerEvent(
            name="PaymentInitiated",
            args={"workflowId": workflow_id, "txHash": payment_ref, "amount": amount},
        )]

    def _op_execute_transfer(self, block_number, value, payment_ref):
        payment = self._payments.get(payment_ref)
        if payment is None:
            raise _Revert(f"unknown payment {payment_ref}")
        if payment["executed"]:
            raise _Revert(f"payment {payment_ref} already executed")
        payment["executed"] = True
        return [LedgerEvent(name="PaymentExecuted", args={"txHash": payment_ref})]

    # ── Settlement contract ──────────────────────────────────────────────────

    def _op_initiate_settlement(self, block_number, value, workflow_id, payment_ref, amount):
        payment = self._payments.get(payment_ref)
        if payment is None or not payment["executed"]:
            raise _Revert(f"payment {payment_ref} has not been executed")
        if payment["amount"] != amount:
            raise _Revert(
                f"settlement amount {amount} does not match payment amount {payment['amount']}"
            )
        if workflow_id in self._settlements:
            raise _Revert(f"settlement for workflow {workflow_id} already initiated")
        self._settlements[workflow_id] = {
            "payment_ref": payment_ref, "amount": amount, "finalized": False,
        }
        return [LedgerEvent(
            name="SettlementInitiated", args={"workflowId": workflow_id, "amount": amount},
        )]

    def _op_finalize_escrow(self, block_number, value, workflow_id):
        settlement = self._settlements.get(workflow_id)
        if settlement is None:
            raise _Revert(f"no settlement initiated for workflow {workflow_id}")
        if settlement["finalized"]:
            raise _Revert(f"settlement for workflow {workflow_id} already finalized")
        settlement["finalized"] = True
        return [LedgerEvent(name="SettlementFinalized", args={"workflowId": workflow_id})]
