"""
FastAPI server for the procurement agent.

Run locally:
    PROCUREMENT_ENCRYPTION_KEY=$(openssl rand -hex 32) uvicorn autoprocure.server:app --reload

Endpoints:
    GET   /health
    GET   /vendors                          ?minPrice=&maxPrice=&minSla=
    GET   /vendors/{vendor_id}
    POST  /procurement/request
    POST  /procurement/{workflow_id}/execute
    GET   /procurement/{workflow_id}/status
    GET   /procurement/{workflow_id}/evaluation
    GET   /procurement/{workflow_id}/ledger

Every response is {"success": bool, ...}; errors carry {"success": false, "error": str}.
Execution is fire-and-forget: /execute returns as soon as the flow is
claimed, and the outcome (including failure) is only visible by polling
/status.
"""
import json
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from autoprocure.catalog import load_default_catalog
from autoprocure.config import Settings, configure_logging, load_settings
from autoprocure.exceptions import (
    InvalidRequestError,
    NotFoundError,
    ProcurementError,
    WorkflowConflictError,
)
from autoprocure.ledger import SimulatedLedger
from autoprocure.models import ProcurementRequest, utc_now
from autoprocure.oracle import ScoringOracle
from autoprocure.orchestrator import ProcurementOrchestrator
from autoprocure.sealing import ConstraintSealer
from autoprocure.validator import DecisionValidator

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    InvalidRequestError: 400,
    NotFoundError: 404,
    WorkflowConflictError: 409,
}


def build_orchestrator(settings: Settings) -> ProcurementOrchestrator:
    catalog = load_default_catalog()
    return ProcurementOrchestrator(
        oracle=ScoringOracle(
            catalog,
            model=settings.oracle_model,
            on_failure=settings.on_oracle_failure,
            timeout=settings.oracle_timeout,
            max_tokens=settings.oracle_max_tokens,
        ),
        validator=DecisionValidator(),
        ledger=SimulatedLedger(amount_scale=settings.amount_scale, block_time=settings.block_time),
        sealer=ConstraintSealer(
            settings.encryption_key, allow_insecure_secret=settings.allow_insecure_key,
        ),
        catalog=catalog,
        payee_address=settings.payee_address,
    )


def get_orchestrator(request: Request) -> ProcurementOrchestrator:
    return request.app.state.orchestrator


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"])
        problems.append(f"{field}: {error['msg']}")
    return "Invalid procurement request: " + "; ".join(problems)


def create_app(orchestrator: ProcurementOrchestrator | None = None) -> FastAPI:
    """
    Build the app. Pass an orchestrator to skip environment configuration
    (tests do this); otherwise one is built from load_settings() at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            settings = load_settings()
            configure_logging(settings.log_level)
            if not settings.encryption_key:
                raise RuntimeError(
                    "PROCUREMENT_ENCRYPTION_KEY env var is required. "
                    "Set it with: export PROCUREMENT_ENCRYPTION_KEY=$(openssl rand -hex 32)"
                )
            app.state.orchestrator = build_orchestrator(settings)
            logger.info("Procurement agent ready (oracle failure mode: %s)", settings.on_oracle_failure)
        yield
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Autonomous Procurement Agent",
        description="Vendor evaluation, validated selection and on-ledger settlement",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict to the frontend's origin in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProcurementError)
    async def procurement_error_handler(request: Request, exc: ProcurementError):
        status_code = next(
            (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500,
        )
        if status_code == 500:
            logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    # ── Vendors ──────────────────────────────────────────────────────────────

    @app.get("/vendors")
    async def list_vendors(
        min_price: float | None = Query(None, alias="minPrice"),
        max_price: float | None = Query(None, alias="maxPrice"),
        min_sla: float | None = Query(None, alias="minSla"),
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        catalog = orchestrator.catalog
        vendors = catalog.get_all()
        if min_price is not None or max_price is not None:
            in_range = catalog.get_by_price_range(
                min_price if min_price is not None else 0.0,
                max_price if max_price is not None else float("inf"),
            )
            vendors = [v for v in vendors if v in in_range]
        if min_sla is not None:
            sla_ok = catalog.get_by_min_sla(min_sla)
            vendors = [v for v in vendors if v in sla_ok]
        return {"success": True, "vendors": [v.to_wire() for v in vendors]}

    @app.get("/vendors/{vendor_id}")
    async def get_vendor(
        vendor_id: str,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        vendor = orchestrator.catalog.get_by_id(vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor not found")
        return {"success": True, "vendor": vendor.to_wire()}

    # ── Procurement ──────────────────────────────────────────────────────────

    @app.post("/procurement/request")
    async def create_procurement_request(
        request: Request,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidRequestError("Request body must be a JSON object") from exc
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be a JSON object")

        if not body.get("brief") or not body.get("maxBudget", body.get("max_budget")):
            raise InvalidRequestError("Missing required fields: brief, maxBudget")

        # Omitted and null optional fields both take the defaults.
        fields = {key: value for key, value in body.items() if value is not None}
        try:
            procurement_request = ProcurementRequest.model_validate(fields)
        except ValidationError as exc:
            raise InvalidRequestError(_describe(exc)) from exc

        workflow_id = await orchestrator.initialize_workflow(procurement_request)
        return {
            "success": True,
            "workflowId": workflow_id,
            "message": "Procurement workflow initialized",
        }

    @app.post("/procurement/{workflow_id}/execute")
    async def execute_procurement(
        workflow_id: int,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        orchestrator.start_execution(workflow_id)
        return {
            "success": True,
            "message": "Autonomous execution started",
            "workflowId": workflow_id,
        }

    @app.get("/procurement/{workflow_id}/status")
    async def get_status(
        workflow_id: int,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        record = orchestrator.get_workflow_status(workflow_id)
        if record is None:
            raise NotFoundError("Workflow not found")
        return {"success": True, "workflow": record.to_wire()}

    @app.get("/procurement/{workflow_id}/evaluation")
    async def get_evaluation(
        workflow_id: int,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        record = orchestrator.get_workflow_status(workflow_id)
        if record is None:
            raise NotFoundError("Workflow not found")
        if record.evaluation is None:
            raise NotFoundError("Evaluation not yet complete")

        evaluation = record.evaluation.to_wire()
        enriched = []
        for score in evaluation["rankedVendors"]:
            vendor = orchestrator.catalog.get_by_id(score["vendorId"])
            enriched.append({**score, "vendor": vendor.to_wire() if vendor else None})
        evaluation["rankedVendors"] = enriched
        return {"success": True, "evaluation": evaluation}

    @app.get("/procurement/{workflow_id}/ledger")
    async def get_ledger_record(
        workflow_id: int,
        orchestrator: ProcurementOrchestrator = Depends(get_orchestrator),
    ):
        record = await orchestrator.get_ledger_record(workflow_id)
        ledger = record.to_wire()
        ledger["stateName"] = record.agent_state.value
        return {"success": True, "ledger": ledger}

    @app.get("/health")
    async def health(orchestrator: ProcurementOrchestrator = Depends(get_orchestrator)):
        return {
            "success": True,
            "status": "healthy",
            "timestamp": utc_now(),
            "catalogVersion": orchestrator.catalog.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("autoprocure.server:app", host="0.0.0.0", port=load_settings().port, log_level="info")
