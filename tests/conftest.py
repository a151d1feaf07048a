import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from anthropic import AnthropicError

from autoprocure.catalog import load_default_catalog
from autoprocure.ledger import SimulatedLedger
from autoprocure.models import EvaluationCriteria, ProcurementRequest
from autoprocure.oracle import ScoringOracle
from autoprocure.orchestrator import ProcurementOrchestrator
from autoprocure.sealing import ConstraintSealer
from autoprocure.validator import DecisionValidator

TEST_SECRET = "test-encryption-secret-for-unit-tests-only"


@pytest.fixture
def catalog():
    return load_default_catalog()


@pytest.fixture
def criteria():
    return EvaluationCriteria(max_budget=500, min_quality_score=7.0, preferred_sla=99.0, duration_days=30)


@pytest.fixture
def analytics_request():
    return ProcurementRequest(
        brief="Need blockchain analytics API for transaction monitoring",
        max_budget=500,
        min_quality_score=7.0,
        preferred_sla=99.0,
        duration_days=30,
    )


@pytest.fixture
def sealer():
    return ConstraintSealer(TEST_SECRET)


@pytest.fixture
def ledger():
    return SimulatedLedger()


@pytest.fixture
def make_client():
    """
    Build an Anthropic client stand-in.

    make_client(text="...")  every messages.create() returns that text
    make_client(error=exc)   every messages.create() raises exc
    """
    def _make(text: str | None = None, error: Exception | None = None):
        if error is not None:
            create = AsyncMock(side_effect=error)
        else:
            message = SimpleNamespace(
                content=[SimpleNamespace(type="text", text=text)],
                usage=SimpleNamespace(input_tokens=812, output_tokens=405),
            )
            create = AsyncMock(return_value=message)
        return SimpleNamespace(messages=SimpleNamespace(create=create))
    return _make


@pytest.fixture
def offline_client(make_client):
    """Client whose every call fails, so fallback mode scores locally."""
    return make_client(error=AnthropicError("connection refused"))


@pytest.fixture
def oracle_json():
    """Serialize [{vendorId, ...}] entries the way the model is asked to answer."""
    def _dump(entries: list[dict], fenced: bool = False) -> str:
        body = json.dumps({"vendors": entries}, indent=2)
        return f"```json\n{body}\n```" if fenced else body
    return _dump


@pytest.fixture
def make_orchestrator(catalog, sealer, ledger, offline_client):
    def _make(
        ledger=ledger,
        client=offline_client,
        on_failure="fallback",
        validator=None,
        store=None,
    ):
        return ProcurementOrchestrator(
            oracle=ScoringOracle(catalog, client=client, on_failure=on_failure),
            validator=validator or DecisionValidator(),
            ledger=ledger,
            sealer=sealer,
            catalog=catalog,
            store=store,
        )
    return _make
