"""
Workflow store: where the orchestrator keeps WorkflowRecords.

The orchestrator only talks to the WorkflowStore interface, so a durable
backend can replace the in-memory one without touching orchestration code.
merge() is the single read-modify-write used for every phase transition and
must be atomic; it applies WorkflowRecord.merged(), so the state machine rules
hold for every backend.
"""
from abc import ABC, abstractmethod
from threading import RLock

from autoprocure.exceptions import NotFoundError
from autoprocure.models import WorkflowRecord


class WorkflowStore(ABC):
    @abstractmethod
    def get(self, workflow_id: int) -> WorkflowRecord | None:
        ...

    @abstractmethod
    def set(self, record: WorkflowRecord) -> None:
        ...

    @abstractmethod
    def merge(self, workflow_id: int, updates: dict) -> WorkflowRecord:
        """
        Atomically apply `updates` to the stored record and return the new version.

        Raises:
            NotFoundError           if no record exists for workflow_id
            InvalidTransitionError  if the update breaks the state machine rules
        """


class InMemoryWorkflowStore(WorkflowStore):
    """Process-lifetime store. Nothing survives a restart; the ledger is the durable record."""

    def __init__(self):
        self._records: dict[int, WorkflowRecord] = {}
        self._lock = RLock()

    def get(self, workflow_id: int) -> WorkflowRecord | None:
        with self._lock:
            return self._records.get(workflow_id)

    def set(self, record: WorkflowRecord) -> None:
        with self._lock:
            self._records[record.workflow_id] = record

    def merge(self, workflow_id: int, updates: dict) -> WorkflowRecord:
        with self._lock:
            current = self._records.get(workflow_id)
            if current is None:
                raise NotFoundError(f"Workflow {workflow_id} not found")
            updated = current.merged(updates)
            self._records[workflow_id] = updated
            return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
