"""
Decision validator: deterministic re-check of the oracle's ranking.

Nothing the oracle produced reaches the ledger without passing through here.
validate() re-applies the hard constraints to every scored vendor, keeps the
first survivor in ranking order, and commits to that choice with a hash.

The decision hash
-----------------
A SHA-256 digest over a canonical JSON document (sorted keys, compact
separators) containing:

    selectedVendorId   the chosen vendor's id, or "none"
    timestamp          the instant the decision was captured
    constraints        maxBudget / minQualityScore / preferredSLA
    topThreeScores     [{id, score}] for the first three ranked entries

It is a commitment, not a secret: anyone holding the evaluation, the
constraints and decided_at can recompute it, and any later edit to the
selection or the top of the ranking changes it. Only the top three entries
go in, so the full evaluation does not have to be revealed to check it.
"""
import hashlib
import json
import logging

from autoprocure.models import DecisionConstraints, ValidationResult, VendorScore, utc_now

logger = logging.getLogger(__name__)

NO_SELECTION = "none"
HASH_TOP_N = 3


def compute_decision_hash(
    selected_vendor_id: str | None,
    timestamp: str,
    constraints: DecisionConstraints,
    ranked_scores: list[VendorScore],
) -> str:
    decision = {
        "selectedVendorId": selected_vendor_id or NO_SELECTION,
        "timestamp": timestamp,
        "constraints": constraints.model_dump(mode="json", by_alias=True),
        "topThreeScores": [
            {"id": s.vendor_id, "score": s.total_score} for s in ranked_scores[:HASH_TOP_N]
        ],
    }
    canonical = json.dumps(decision, sort_keys=True, separators=(",", ":"))
    return "0x" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class DecisionValidator:
    def validate(
        self,
        scores: list[VendorScore],
        constraints: DecisionConstraints,
        decided_at: str | None = None,
    ) -> ValidationResult:
        """
        Filter scores against the constraints and select the best survivor.

        Args:
            scores       ranked scores, already descending by total_score
            constraints  the request's hard limits
            decided_at   capture instant for the hash; defaults to now

        Returns:
            ValidationResult; is_valid is False (not an exception) when nothing
            survives, and violations explains every exclusion in input order
        """
        violations = []
        survivors = []
        for score in scores:
            if not score.meets_constraints:
                violations.append(f"{score.vendor_name} does not meet basic constraints")
                continue
            # Raw score check, independent of meets_constraints
            if score.quality_score < constraints.min_quality_score:
                violations.append(
                    f"{score.vendor_name} quality score {score.quality_score:g} "
                    f"< required {constraints.min_quality_score:g}"
                )
                continue
            survivors.append(score)

        selected = survivors[0] if survivors else None
        decided_at = decided_at or utc_now()
        decision_hash = compute_decision_hash(
            selected.vendor_id if selected else None, decided_at, constraints, scores,
        )
        if selected is None:
            logger.warning("No vendor survived validation (%d violations)", len(violations))

        return ValidationResult(
            is_valid=selected is not None,
            selected_vendor=selected,
            violations=violations,
            decision_hash=decision_hash,
            decided_at=decided_at,
        )

    def recompute_hash(
        self,
        result: ValidationResult,
        scores: list[VendorScore],
        constraints: DecisionConstraints,
    ) -> bool:
        """True if `result.decision_hash` still matches the evaluation it claims to commit to."""
        selected_id = result.selected_vendor.vendor_id if result.selected_vendor else None
        expected = compute_decision_hash(selected_id, result.decided_at, constraints, scores)
        return expected == result.decision_hash

    def verify_decision(
        self,
        vendor_id: str,
        amount: float,
        constraints: DecisionConstraints,
    ) -> bool:
        """Last check before funds move: the payment may not exceed the budget."""
        if amount > constraints.max_budget:
            logger.error(
                "Payment of %s to %s exceeds budget %s", amount, vendor_id, constraints.max_budget
            )
            return False
        return True
