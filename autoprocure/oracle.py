"""
Scoring oracle adapter: Claude-powered vendor evaluation.

The oracle is untrusted. Its response is parsed into a tagged result,
ParsedScores or MalformedResponse, and even a well-formed response only
contributes the numeric scores: meets_constraints is recomputed from catalog
data for every vendor, whatever the model claimed.

Failure handling is a deployment choice (on_failure):

    "fail"      transport errors and malformed responses raise OracleError,
                which the orchestrator turns into a terminal Error state
    "fallback"  the same failures are logged and the deterministic local
                scorer (scoring.score_locally) produces the evaluation instead

Either way the ranking is sorted descending by total_score with ties kept in
catalog order.
"""
import json
import logging
import math
import os
import re
from typing import Literal

from anthropic import AnthropicError, AsyncAnthropic
from pydantic import BaseModel

from autoprocure.catalog import VendorCatalog
from autoprocure.exceptions import OracleError
from autoprocure.models import EvaluationCriteria, EvaluationResult, Vendor, VendorScore
from autoprocure.scoring import (
    COST_WEIGHT,
    QUALITY_WEIGHT,
    SLA_WEIGHT,
    build_recommendation,
    meets_constraints,
    rank_scores,
    score_locally,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
FAILURE_MODES = ("fail", "fallback")

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ParsedScores(BaseModel):
    kind: Literal["parsed"] = "parsed"
    scores: list[VendorScore]


class MalformedResponse(BaseModel):
    kind: Literal["malformed"] = "malformed"
    raw: str
    reason: str


def build_prompt(brief: str, vendors: list[Vendor], criteria: EvaluationCriteria) -> str:
    vendor_lines = []
    for idx, v in enumerate(vendors, 1):
        vendor_lines.append(
            f"{idx}. {v.name} (ID: {v.id})\n"
            f"   - Price: ${v.price_per_month:g}/month\n"
            f"   - SLA: {v.sla:g}% uptime\n"
            f"   - Reputation Score: {v.reputation_score:g}/10\n"
            f"   - Features: {', '.join(v.features)}\n"
            f"   - Description: {v.description}"
        )
    vendor_list = "\n\n".join(vendor_lines)

    return f"""You are an enterprise procurement analyst evaluating vendor proposals.

PROCUREMENT REQUEST:
"{brief}"

EVALUATION CRITERIA:
- Maximum Budget: ${criteria.max_budget:g} (for {criteria.duration_days} days)
- Minimum Quality Score Required: {criteria.min_quality_score:g}/10
- Preferred SLA: {criteria.preferred_sla:g}% uptime

AVAILABLE VENDORS:
{vendor_list}

TASK:
Evaluate each vendor and return JSON with this structure:

{{
  "vendors": [
    {{
      "vendorId": "vendor_1",
      "vendorName": "Vendor Name",
      "costScore": 0-10,
      "qualityScore": 0-10,
      "slaScore": 0-10,
      "totalScore": 0-10,
      "reasoning": "Brief explanation of scores",
      "meetsConstraints": true/false
    }}
  ]
}}

SCORING GUIDELINES:
1. Cost Score: higher for lower price within budget (0 if over budget)
2. Quality Score: based on reputation, features and service quality
3. SLA Score: based on uptime guarantee relative to the requirement
4. Total Score: weighted average ({COST_WEIGHT:.0%} cost, {QUALITY_WEIGHT:.0%} quality, {SLA_WEIGHT:.0%} SLA)
5. Meets Constraints: true only if under budget and meets minimum quality

Cost for the duration is price per month * days / 30.
Use the vendorId values exactly as listed above.
Return ONLY the JSON object, no explanation."""


def _extract_json(response_text: str) -> str | None:
    text = response_text.strip()
    # Models like to wrap JSON in markdown fences
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()
    match = _JSON_OBJECT.search(text)
    return match.group(0) if match else None


def _coerce_score(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(max(number, 0.0), 10.0)


def parse_response(
    response_text: str,
    vendors: list[Vendor],
    criteria: EvaluationCriteria,
) -> ParsedScores | MalformedResponse:
    """
    Turn raw oracle text into scores, or say why it can't be used.

    Unknown or duplicate vendor ids make the whole response malformed: a
    partially trustworthy ranking is not something to pay against.
    """
    payload = _extract_json(response_text)
    if payload is None:
        return MalformedResponse(raw=response_text, reason="no JSON object in response")
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        return MalformedResponse(raw=response_text, reason=f"invalid JSON: {exc.msg}")

    entries = parsed.get("vendors") if isinstance(parsed, dict) else None
    if not isinstance(entries, list) or not entries:
        return MalformedResponse(raw=response_text, reason="missing or empty 'vendors' collection")

    known = {v.id: v for v in vendors}
    seen = set()
    scores = []
    for entry in entries:
        if not isinstance(entry, dict):
            return MalformedResponse(raw=response_text, reason="vendor entry is not an object")
        vendor_id = entry.get("vendorId")
        vendor = known.get(vendor_id) if isinstance(vendor_id, str) else None
        if vendor is None:
            return MalformedResponse(raw=response_text, reason=f"unknown vendor {vendor_id!r}")
        if vendor_id in seen:
            return MalformedResponse(raw=response_text, reason=f"duplicate vendor {vendor_id!r}")
        seen.add(vendor_id)

        quality_score = _coerce_score(entry.get("qualityScore"))
        scores.append(VendorScore(
            vendor_id=vendor.id,
            vendor_name=str(entry.get("vendorName") or vendor.name),
            cost_score=_coerce_score(entry.get("costScore")),
            quality_score=quality_score,
            sla_score=_coerce_score(entry.get("slaScore")),
            total_score=_coerce_score(entry.get("totalScore")),
            reasoning=str(entry.get("reasoning") or "No reasoning provided"),
            # Recomputed from catalog data; entry["meetsConstraints"] is ignored.
            meets_constraints=meets_constraints(vendor, quality_score, criteria),
        ))
    return ParsedScores(scores=scores)


class ScoringOracle:
    """
    Evaluates vendors with an LLM, falling back to local scoring if configured.

    The Anthropic client is created on first use so importing this module (or
    constructing the adapter without an API key) never blocks or fails.
    """

    def __init__(
        self,
        catalog: VendorCatalog,
        client=None,
        model: str = DEFAULT_MODEL,
        on_failure: str = "fallback",
        timeout: float = 30.0,
        max_tokens: int = 2048,
    ):
        if on_failure not in FAILURE_MODES:
            raise ValueError(f"on_failure must be one of {FAILURE_MODES}, got {on_failure!r}")
        self._catalog = catalog
        self._client = client
        self._model = model
        self._on_failure = on_failure
        self._timeout = timeout
        self._max_tokens = max_tokens

    @property
    def on_failure(self) -> str:
        return self._on_failure

    def _get_client(self):
        if self._client is None:
            if not os.environ.get("ANTHROPIC_API_KEY"):
                raise OracleError("ANTHROPIC_API_KEY is not set")
            self._client = AsyncAnthropic(timeout=self._timeout)
        return self._client

    async def _request_scores(self, prompt: str) -> str:
        message = await self._get_client().messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.debug(
                "Oracle usage: %s input / %s output tokens",
                usage.input_tokens, usage.output_tokens,
            )
        return "".join(getattr(block, "text", "") for block in message.content)

    async def evaluate(
        self,
        brief: str,
        vendors: list[Vendor],
        criteria: EvaluationCriteria,
    ) -> EvaluationResult:
        """
        Score and rank vendors for a brief.

        Raises:
            OracleError  only when on_failure == "fail"
        """
        prompt = build_prompt(brief, vendors, criteria)
        logger.info("Requesting oracle evaluation of %d vendors (model %s)", len(vendors), self._model)

        try:
            response_text = await self._request_scores(prompt)
        except (AnthropicError, OracleError, TimeoutError) as exc:
            error = OracleError(f"Scoring oracle request failed: {exc}")
            return self._handle_failure(error, vendors, criteria, cause=exc)

        result = parse_response(response_text, vendors, criteria)
        if isinstance(result, MalformedResponse):
            error = OracleError(f"Malformed oracle response: {result.reason}", raw=result.raw)
            return self._handle_failure(error, vendors, criteria)

        return self._to_evaluation(result.scores)

    def _handle_failure(
        self,
        error: OracleError,
        vendors: list[Vendor],
        criteria: EvaluationCriteria,
        cause: Exception | None = None,
    ) -> EvaluationResult:
        if self._on_failure == "fail":
            raise error from cause
        logger.warning("%s; using deterministic fallback scoring", error)
        return self._to_evaluation(score_locally(vendors, criteria))

    def _to_evaluation(self, scores: list[VendorScore]) -> EvaluationResult:
        ranked = rank_scores(scores, self._catalog)
        return EvaluationResult(
            ranked_vendors=ranked,
            recommendation=build_recommendation(ranked),
        )
