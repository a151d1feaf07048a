"""
Deterministic scoring arithmetic.

Everything numeric that decides whether money moves goes through this module:
the prorated cost formula, the hard-constraint predicate, the 40/35/25
weighting and the local fallback scorer. The oracle adapter, the validator
and the orchestrator all import from here so there is exactly one copy of
each formula.
"""
from autoprocure.catalog import VendorCatalog
from autoprocure.models import EvaluationCriteria, Vendor, VendorScore

COST_WEIGHT = 0.40
QUALITY_WEIGHT = 0.35
SLA_WEIGHT = 0.25

BILLING_PERIOD_DAYS = 30

NO_QUALIFYING_VENDOR = (
    "No vendors meet the specified constraints. "
    "Consider adjusting budget or quality requirements."
)


def prorated_cost(price_per_month: float, duration_days: int) -> float:
    """Cost of a vendor for the contract duration: price * days / 30."""
    return price_per_month * duration_days / BILLING_PERIOD_DAYS


def meets_constraints(vendor: Vendor, quality_score: float, criteria: EvaluationCriteria) -> bool:
    """The authoritative constraint check. Ignores anything an oracle said about it."""
    within_budget = prorated_cost(vendor.price_per_month, criteria.duration_days) <= criteria.max_budget
    return within_budget and quality_score >= criteria.min_quality_score


def weighted_total(cost_score: float, quality_score: float, sla_score: float) -> float:
    return cost_score * COST_WEIGHT + quality_score * QUALITY_WEIGHT + sla_score * SLA_WEIGHT


def score_vendor_locally(vendor: Vendor, criteria: EvaluationCriteria) -> VendorScore:
    total_cost = prorated_cost(vendor.price_per_month, criteria.duration_days)
    if total_cost <= criteria.max_budget:
        # Cheaper relative to budget scores higher; anything in budget lands in [5, 10].
        cost_score = 10 - (total_cost / criteria.max_budget) * 5
    else:
        cost_score = 0.0
    quality_score = vendor.reputation_score
    sla_score = vendor.sla / 100 * 10
    total_score = weighted_total(cost_score, quality_score, sla_score)
    qualifies = meets_constraints(vendor, quality_score, criteria)

    if qualifies:
        reasoning = (
            f"Strong performer with {vendor.sla:g}% uptime and {len(vendor.features)} "
            f"enterprise features. Fits within budget at ${vendor.price_per_month:g}/month."
        )
    elif total_cost > criteria.max_budget:
        reasoning = f"Exceeds budget constraint (${total_cost:g} > ${criteria.max_budget:g})"
    else:
        reasoning = (
            f"Quality score {quality_score:g} below minimum threshold "
            f"{criteria.min_quality_score:g}"
        )

    return VendorScore(
        vendor_id=vendor.id,
        vendor_name=vendor.name,
        cost_score=round(cost_score, 2),
        quality_score=round(quality_score, 2),
        sla_score=round(sla_score, 2),
        total_score=round(total_score, 2),
        reasoning=reasoning,
        meets_constraints=qualifies,
    )


def score_locally(vendors: list[Vendor], criteria: EvaluationCriteria) -> list[VendorScore]:
    """Fallback scorer: same weighting as the oracle prompt, computed from catalog attributes."""
    return [score_vendor_locally(v, criteria) for v in vendors]


def rank_scores(scores: list[VendorScore], catalog: VendorCatalog) -> list[VendorScore]:
    """Descending by total_score; equal totals keep catalog order."""
    in_catalog_order = sorted(scores, key=lambda s: catalog.index_of(s.vendor_id))
    return sorted(in_catalog_order, key=lambda s: s.total_score, reverse=True)


def build_recommendation(ranked: list[VendorScore]) -> str:
    for score in ranked:
        if score.meets_constraints:
            return (
                f"Recommended: {score.vendor_name} (Score: {score.total_score:.1f}/10). "
                f"{score.reasoning}"
            )
    return NO_QUALIFYING_VENDOR
