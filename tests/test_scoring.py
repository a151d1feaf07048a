import pytest

from autoprocure.models import EvaluationCriteria, VendorScore
from autoprocure.scoring import (
    NO_QUALIFYING_VENDOR,
    build_recommendation,
    meets_constraints,
    prorated_cost,
    rank_scores,
    score_locally,
    weighted_total,
)


def _score(vendor_id, total, meets=True, name=None):
    return VendorScore(
        vendor_id=vendor_id,
        vendor_name=name or vendor_id,
        cost_score=total,
        quality_score=total,
        sla_score=total,
        total_score=total,
        reasoning="r",
        meets_constraints=meets,
    )


class TestProratedCost:
    def test_full_month(self):
        assert prorated_cost(450, 30) == 450

    def test_half_month(self):
        assert prorated_cost(380, 15) == 190

    def test_longer_contract(self):
        assert prorated_cost(300, 90) == 900


class TestMeetsConstraints:
    def test_within_budget_and_quality(self, catalog, criteria):
        assert meets_constraints(catalog.get_by_id("vendor_2"), 8.8, criteria)

    def test_over_budget(self, catalog, criteria):
        assert not meets_constraints(catalog.get_by_id("vendor_4"), 9.8, criteria)

    def test_below_quality(self, catalog, criteria):
        assert not meets_constraints(catalog.get_by_id("vendor_5"), 6.9, criteria)

    def test_budget_boundary_is_inclusive(self, catalog):
        exact = EvaluationCriteria(max_budget=450, min_quality_score=7.0)
        assert meets_constraints(catalog.get_by_id("vendor_1"), 9.2, exact)

    def test_duration_changes_the_outcome(self, catalog):
        two_weeks = EvaluationCriteria(max_budget=400, min_quality_score=7.0, duration_days=15)
        assert meets_constraints(catalog.get_by_id("vendor_4"), 9.8, two_weeks)


class TestWeighting:
    def test_perfect_scores_total_ten(self):
        assert weighted_total(10, 10, 10) == pytest.approx(10)

    def test_weights(self):
        assert weighted_total(10, 0, 0) == pytest.approx(4.0)
        assert weighted_total(0, 10, 0) == pytest.approx(3.5)
        assert weighted_total(0, 0, 10) == pytest.approx(2.5)


class TestScoreLocally:
    def test_scores_every_vendor(self, catalog, criteria):
        scores = score_locally(catalog.get_all(), criteria)
        assert [s.vendor_id for s in scores] == [v.id for v in catalog.get_all()]

    def test_eligibility(self, catalog, criteria):
        scores = {s.vendor_id: s for s in score_locally(catalog.get_all(), criteria)}
        eligible = {vid for vid, s in scores.items() if s.meets_constraints}
        assert eligible == {"vendor_1", "vendor_2", "vendor_3"}

    def test_over_budget_vendor(self, catalog, criteria):
        scores = {s.vendor_id: s for s in score_locally(catalog.get_all(), criteria)}
        v4 = scores["vendor_4"]
        assert v4.cost_score == 0
        assert v4.total_score == pytest.approx(5.93, abs=0.01)
        assert "Exceeds budget" in v4.reasoning

    def test_low_quality_vendor(self, catalog, criteria):
        scores = {s.vendor_id: s for s in score_locally(catalog.get_all(), criteria)}
        assert "below minimum threshold" in scores["vendor_5"].reasoning

    def test_in_budget_cost_score(self, catalog, criteria):
        scores = {s.vendor_id: s for s in score_locally(catalog.get_all(), criteria)}
        # 380 of 500 budget -> 10 - 0.76 * 5
        assert scores["vendor_2"].cost_score == pytest.approx(6.2)
        assert scores["vendor_2"].sla_score == pytest.approx(9.95)


class TestRanking:
    def test_descending_by_total(self, catalog):
        ranked = rank_scores(
            [_score("vendor_1", 6.0), _score("vendor_2", 9.0), _score("vendor_3", 7.5)], catalog,
        )
        assert [s.vendor_id for s in ranked] == ["vendor_2", "vendor_3", "vendor_1"]

    def test_ties_keep_catalog_order(self, catalog):
        ranked = rank_scores(
            [_score("vendor_5", 8.0), _score("vendor_2", 8.0), _score("vendor_4", 8.0)], catalog,
        )
        assert [s.vendor_id for s in ranked] == ["vendor_2", "vendor_4", "vendor_5"]

    def test_fallback_ranking(self, catalog, criteria):
        ranked = rank_scores(score_locally(catalog.get_all(), criteria), catalog)
        assert ranked[0].vendor_id == "vendor_2"
        assert ranked[-1].vendor_id == "vendor_4"
        totals = [s.total_score for s in ranked]
        assert totals == sorted(totals, reverse=True)


class TestRecommendation:
    def test_first_qualifying_vendor(self):
        ranked = [_score("a", 9.0, meets=False), _score("b", 8.0, name="Beta")]
        text = build_recommendation(ranked)
        assert text.startswith("Recommended: Beta (Score: 8.0/10)")

    def test_none_qualifying(self):
        assert build_recommendation([_score("a", 9.0, meets=False)]) == NO_QUALIFYING_VENDOR
