"""Tests for the match orchestrator"""

import itertools

import pytest
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from organmatch.data.schema import (
    Donor,
    DonorFilters,
    MatchOptions,
    OrganType,
    Patient,
    Policy,
    RejectionReason,
)
from organmatch.integrations.candidates import InMemoryDonorSupplier
from organmatch.matching import MatchOrchestrator, PolicyNotFoundError, PolicyStore
from organmatch.matching.match_orchestrator import rank_results


FULL_HLA = dict(a1="A1", a2="A2", b1="B7", b2="B8", dr1="DR15", dr2="DR4")
VERIFIED = {"verified": True, "score_bps": 9000}


# ============================================================================
# Fixtures
# ============================================================================

def make_patient(**overrides) -> Patient:
    data = dict(
        id="P-001",
        organ_type="KIDNEY",
        blood_group="A+",
        age=40,
        weight=70,
        city="Mumbai",
        urgency=80,
        hla=FULL_HLA,
        verification=VERIFIED,
    )
    data.update(overrides)
    return Patient.model_validate(data)


def make_donor(donor_id: str, **overrides) -> Donor:
    data = dict(
        id=donor_id,
        organ_type="KIDNEY",
        blood_group="A+",
        age=42,
        weight=72,
        city="Pune",
        hla=FULL_HLA,
        verification=VERIFIED,
    )
    data.update(overrides)
    return Donor.model_validate(data)


def age_only_engine(**thresholds) -> MatchOrchestrator:
    """Engine whose kidney policy scores on age alone (1 - gap/50)"""
    policy = Policy.model_validate({
        "organ_type": "KIDNEY",
        "weights": {"w_age": 1.0},
        "constraints": {"max_age_difference": 20, "max_weight_difference_pct": 40},
        "thresholds": thresholds,
    })
    return MatchOrchestrator(policy_store=PolicyStore([policy]))


def ids(results):
    return [r.donor_id for r in results]


@pytest.fixture
def engine():
    return MatchOrchestrator(policy_store=PolicyStore.with_defaults())


# ============================================================================
# Ranking
# ============================================================================

class TestRanking:
    """Test ordering, tie-breaks and truncation"""

    def test_sorted_by_score(self):
        engine = age_only_engine()
        donors = [
            make_donor("D-50", age=50),
            make_donor("D-40", age=40),
            make_donor("D-45", age=45),
        ]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert ids(batch.matches) == ["D-40", "D-45", "D-50"]
        assert [m.score for m in batch.matches] == [1.0, 0.9, 0.8]

    def test_equal_scores_fall_back_to_confidence(self):
        engine = age_only_engine()
        donors = [
            make_donor("D-sparse", age=40, hla=None),
            make_donor("D-full", age=40),
        ]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert ids(batch.matches) == ["D-full", "D-sparse"]
        assert batch.matches[0].score == batch.matches[1].score
        assert batch.matches[0].confidence > batch.matches[1].confidence

    def test_near_equal_scores_count_as_ties(self):
        """Scores within the tie epsilon are ordered by confidence"""
        engine = age_only_engine()
        donors = [
            make_donor("D-higher-score", age=45, hla=None),
            make_donor("D-higher-confidence", age=45.025),
        ]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert batch.matches[0].score < batch.matches[1].score
        assert ids(batch.matches) == ["D-higher-confidence", "D-higher-score"]

    def test_full_ties_keep_input_order(self):
        engine = age_only_engine()
        donors = [make_donor(f"D-{i}", age=40) for i in range(5)]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert ids(batch.matches) == ["D-0", "D-1", "D-2", "D-3", "D-4"]

    def test_truncation(self):
        engine = age_only_engine()
        donors = [make_donor(f"D-{age}", age=age) for age in (50, 48, 46, 44, 42, 40)]

        batch = engine.match_patient_to_donors(make_patient(), donors, MatchOptions(max_results=2))

        assert ids(batch.matches) == ["D-40", "D-42"]
        assert batch.summary.above_threshold == 6

    def test_rank_results_is_pure(self):
        engine = age_only_engine()
        batch = engine.match_patient_to_donors(
            make_patient(), [make_donor("D-40", age=40), make_donor("D-50", age=50)]
        )
        reversed_input = list(reversed(batch.matches))

        assert ids(rank_results(reversed_input)) == ["D-40", "D-50"]
        assert ids(reversed_input) == ["D-50", "D-40"]


# ============================================================================
# Summary and thresholds
# ============================================================================

class TestSummary:
    """Test the request summary"""

    def test_counts_and_averages(self):
        engine = age_only_engine(min_match_score=0.85)
        donors = [
            make_donor("D-40", age=40),
            make_donor("D-45", age=45),
            make_donor("D-50", age=50),
            make_donor("D-B", blood_group="B+"),
        ]

        batch = engine.match_patient_to_donors(make_patient(), donors)
        summary = batch.summary

        assert ids(batch.matches) == ["D-40", "D-45"]
        assert summary.total_candidates == 4
        assert summary.candidates_evaluated == 4
        assert summary.filtered_by_policy == 1
        assert summary.below_threshold == 1
        assert summary.above_threshold == 2
        assert summary.best_score == 1.0
        assert summary.average_score == 0.9
        assert summary.budget_exhausted is False

    def test_include_low_scores(self):
        engine = age_only_engine(min_match_score=0.85)
        donors = [make_donor("D-40", age=40), make_donor("D-50", age=50)]

        batch = engine.match_patient_to_donors(
            make_patient(), donors, MatchOptions(include_low_scores=True)
        )

        assert ids(batch.matches) == ["D-40", "D-50"]
        assert batch.summary.below_threshold == 0
        assert batch.summary.above_threshold == 1

    def test_empty_pool(self, engine):
        batch = engine.match_patient_to_donors(make_patient(), [])

        assert batch.matches == []
        assert batch.summary.total_candidates == 0
        assert batch.summary.best_score == 0.0
        assert batch.summary.average_score == 0.0

    def test_everything_filtered(self, engine):
        donors = [make_donor("D-1", blood_group="B+"), make_donor("D-2", organ_type="LIVER")]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert batch.matches == []
        assert batch.summary.filtered_by_policy == 2
        assert batch.summary.average_score == 0.0

    def test_policy_returned(self, engine):
        batch = engine.match_patient_to_donors(make_patient(), [make_donor("D-1")])
        assert batch.policy.organ_type == OrganType.KIDNEY
        assert batch.matches[0].metadata.policy_version == batch.policy.version_tag


class TestTimeBudget:
    """Test the wall-clock budget"""

    def test_budget_stops_early(self):
        engine = age_only_engine()
        ticks = itertools.count(0.0, 1.0)
        engine.clock = lambda: next(ticks)
        donors = [make_donor(f"D-{i}", age=40 + i) for i in range(4)]

        batch = engine.match_patient_to_donors(
            make_patient(), donors, MatchOptions(time_budget_seconds=1.5)
        )

        assert batch.summary.budget_exhausted is True
        assert batch.summary.candidates_evaluated == 2
        assert batch.summary.total_candidates == 4
        assert ids(batch.matches) == ["D-0", "D-1"]

    def test_no_budget_evaluates_everything(self):
        engine = age_only_engine()
        donors = [make_donor(f"D-{i}", age=40 + i) for i in range(4)]

        batch = engine.match_patient_to_donors(make_patient(), donors)

        assert batch.summary.candidates_evaluated == 4
        assert batch.summary.budget_exhausted is False


# ============================================================================
# Default kidney policy scenarios
# ============================================================================

class TestKidneyScenarios:
    """End-to-end checks against the built-in kidney policy"""

    def test_good_pair(self, engine):
        batch = engine.match_patient_to_donors(make_patient(), [make_donor("D-1")])
        match = batch.matches[0]

        assert match.breakdown.blood == 1.0
        assert match.breakdown.hla == 1.0
        assert match.score >= 0.9
        assert match.warnings == []
        assert match.metadata.ai_model_version is None

    def test_missing_urgency(self, engine):
        batch = engine.match_patient_to_donors(make_patient(urgency=None), [make_donor("D-1")])
        match = batch.matches[0]

        assert match.breakdown.urgency == 0.5
        assert match.confidence < 0.95

    def test_rh_negative_patient(self, engine):
        outcome = engine.evaluate(make_patient(blood_group="O-"), make_donor("D-1", blood_group="O+"))
        assert outcome.reason == RejectionReason.BLOOD

    def test_blend_opt_in(self, engine):
        batch = engine.match_patient_to_donors(
            make_patient(), [make_donor("D-1")], MatchOptions(use_blend=True)
        )
        assert batch.matches[0].metadata.ai_model_version is not None

    def test_request_overrides_leave_store_alone(self, engine):
        options = MatchOptions(policy_overrides={"constraints": {"max_distance_km": 100}})

        batch = engine.match_patient_to_donors(make_patient(), [make_donor("D-1")], options)

        assert batch.matches == []
        assert batch.summary.filtered_by_policy == 1
        assert batch.policy.constraints.max_distance_km == 100
        assert engine.get_policy(OrganType.KIDNEY).constraints.max_distance_km == 2000

    def test_repeatable(self, engine):
        donors = [make_donor("D-1"), make_donor("D-2", age=50, city="Mumbai")]

        first = engine.match_patient_to_donors(make_patient(), donors)
        second = engine.match_patient_to_donors(make_patient(), donors)

        assert engine.export_results(first.matches) == engine.export_results(second.matches)
        assert engine.export_results(first.matches, "tabular") == engine.export_results(second.matches, "tabular")


# ============================================================================
# Policy administration
# ============================================================================

class TestPolicies:
    """Test policy lookup and updates through the engine"""

    def test_missing_policy(self, engine):
        with pytest.raises(PolicyNotFoundError) as exc_info:
            engine.match_patient_to_donors(make_patient(organ_type="HEART"), [])
        assert exc_info.value.organ_type == OrganType.HEART

    def test_inactive_policy(self, engine):
        engine.update_policy(OrganType.KIDNEY, {"is_active": False})
        with pytest.raises(PolicyNotFoundError):
            engine.match_patient_to_donors(make_patient(), [make_donor("D-1")])

    def test_update_visible_to_next_request(self, engine):
        engine.update_policy("KIDNEY", {"thresholds": {"min_match_score": 0.99}})

        batch = engine.match_patient_to_donors(make_patient(), [make_donor("D-1")])

        assert batch.matches == []
        assert batch.summary.below_threshold == 1
        assert batch.policy.version_tag == "1.0.0-r2"

    def test_engines_are_isolated(self):
        first = MatchOrchestrator(policy_store=PolicyStore.with_defaults())
        second = MatchOrchestrator(policy_store=PolicyStore.with_defaults())

        first.update_policy(OrganType.LIVER, {"weights": {"w_blood": 0.9}})

        assert first.get_policy(OrganType.LIVER).weights.w_blood == 0.9
        assert second.get_policy(OrganType.LIVER).weights.w_blood == 0.30


# ============================================================================
# Single-pair checks and supply
# ============================================================================

class TestCompatibilityCheck:
    """Test the single-pair report"""

    def test_excellent_match(self, engine):
        report = engine.check_compatibility(make_patient(), make_donor("D-1"))

        assert report.compatible is True
        assert report.details.donor_id == "D-1"
        assert report.recommendations == ["Excellent match - proceed with allocation"]

    def test_warnings_become_recommendations(self, engine):
        report = engine.check_compatibility(make_patient(), make_donor("D-1", hla=None))

        assert report.compatible is True
        assert report.recommendations == ["Consider: HLA data incomplete"]

    def test_incompatible(self, engine):
        report = engine.check_compatibility(
            make_patient(blood_group="O-"), make_donor("D-1", blood_group="O+")
        )

        assert report.compatible is False
        assert report.details is None
        assert report.rejection.reason == RejectionReason.BLOOD
        assert "blood incompatible" in report.recommendations[0]

    def test_low_score_still_compatible(self, engine):
        engine.update_policy(OrganType.KIDNEY, {"thresholds": {"min_match_score": 0.99}})
        report = engine.check_compatibility(make_patient(), make_donor("D-1"))

        assert report.compatible is True
        assert report.details is not None


class TestSupplier:
    """Test matching from a candidate supplier"""

    def test_match_from_supplier(self, engine):
        supplier = InMemoryDonorSupplier([
            make_donor("D-pune"),
            make_donor("D-liver", organ_type="LIVER"),
            make_donor("D-delhi", city="Delhi"),
        ])

        batch = engine.match_from_supplier(
            make_patient(), supplier, DonorFilters(cities=["pune"])
        )

        assert ids(batch.matches) == ["D-pune"]
        assert batch.summary.total_candidates == 1
