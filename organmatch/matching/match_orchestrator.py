"""Match Orchestrator - rank a donor pool for one patient"""

import time
from functools import cmp_to_key
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple, Union

from loguru import logger

from organmatch.config import settings
from organmatch.data.schema import (
    Accepted,
    CompatibilityReport,
    Donor,
    DonorFilters,
    Evaluation,
    MatchBatchResult,
    MatchOptions,
    MatchResult,
    MatchSummary,
    OrganType,
    Patient,
    Policy,
    Rejected,
)
from organmatch.matching.errors import PolicyNotFoundError
from organmatch.matching.locations import LocationResolver
from organmatch.matching.policy_store import PolicyPatch, PolicyStore, merge_policy
from organmatch.matching.result_exporter import ExportFormat, export_results
from organmatch.matching.scoring_engine import DEFAULT_BLEND, BlendConfig, ScoringEngine

if TYPE_CHECKING:
    from organmatch.integrations.candidates import DonorCandidateSupplier


def rank_results(results: List[MatchResult], epsilon: Optional[float] = None) -> List[MatchResult]:
    """
    Sort results by score, then confidence

    Scores closer than epsilon count as equal and fall back to confidence
    (descending). Remaining ties keep their input order.
    """
    epsilon = settings.score_tie_epsilon if epsilon is None else epsilon

    def compare(a: MatchResult, b: MatchResult) -> int:
        if abs(a.score - b.score) < epsilon:
            if a.confidence == b.confidence:
                return 0
            return -1 if a.confidence > b.confidence else 1
        return -1 if a.score > b.score else 1

    return sorted(results, key=cmp_to_key(compare))


class MatchOrchestrator:
    """
    Matching engine entry point

    Features:
    - Hard-filter and score a candidate pool against the patient's policy
    - Deterministic ranking and truncation
    - Request-level summary statistics
    - Policy administration (read / partial update)
    - Audit export

    Each instance owns its policy store and blend configuration, so
    independent engines can run side by side.
    """

    def __init__(self,
                 policy_store: Optional[PolicyStore] = None,
                 blend: Optional[BlendConfig] = DEFAULT_BLEND,
                 resolver: Optional[LocationResolver] = None):
        """
        Initialize orchestrator

        Args:
            policy_store: Policy source (if None, loads settings.policies_file
                or the built-in defaults)
            blend: Deterministic blend used when a request opts in; None disables it
            resolver: Location resolver for distance computation
        """
        if policy_store is None:
            if settings.policies_file is not None:
                policy_store = PolicyStore.from_json(settings.policies_file)
            else:
                policy_store = PolicyStore.with_defaults()

        self.policy_store = policy_store
        self.scorer = ScoringEngine(resolver=resolver, blend=blend)
        self.clock = time.monotonic

    # ------------------------------------------------------------------
    # Policy administration
    # ------------------------------------------------------------------

    def get_policy(self, organ_type: Union[OrganType, str]) -> Optional[Policy]:
        return self.policy_store.get(organ_type)

    def update_policy(self, organ_type: Union[OrganType, str], partial: PolicyPatch) -> Policy:
        return self.policy_store.update(organ_type, partial)

    def resolve_policy(self, organ_type: OrganType, options: Optional[MatchOptions] = None) -> Policy:
        """
        Policy snapshot for one request, with per-request overrides applied

        Raises:
            PolicyNotFoundError: no policy, or the effective policy is inactive
        """
        policy = self.policy_store.get(organ_type)
        if policy is None:
            raise PolicyNotFoundError(organ_type)

        if options is not None and options.policy_overrides is not None:
            policy = merge_policy(policy, options.policy_overrides)

        if not policy.is_active:
            raise PolicyNotFoundError(organ_type)

        return policy

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def evaluate(
        self,
        patient: Patient,
        donor: Donor,
        options: Optional[MatchOptions] = None
    ) -> Evaluation:
        """Evaluate a single donor against the patient's current policy"""
        return self.scorer.evaluate(patient, donor, self.resolve_policy(patient.organ_type, options), options)

    def iter_evaluations(
        self,
        patient: Patient,
        donors: Sequence[Donor],
        policy: Policy,
        options: MatchOptions
    ) -> Iterator[Tuple[Donor, Evaluation]]:
        """Yield (donor, outcome) one candidate at a time"""
        for donor in donors:
            yield donor, self.scorer.evaluate(patient, donor, policy, options)

    def match_patient_to_donors(
        self,
        patient: Patient,
        donors: Sequence[Donor],
        options: Optional[MatchOptions] = None
    ) -> MatchBatchResult:
        """
        Rank donor candidates for a patient

        Args:
            patient: Recipient
            donors: Candidate pool, already resolved (verification included)
            options: Request options (max results, low-score inclusion, blend,
                policy overrides, wall-clock budget)

        Returns:
            MatchBatchResult with ranked matches, summary and the policy used

        Raises:
            PolicyNotFoundError: no active policy for the patient's organ type
        """
        options = options or MatchOptions()
        policy = self.resolve_policy(patient.organ_type, options)

        if len(donors) == 0:
            logger.warning(f"No donor candidates provided for patient {patient.id}")

        deadline = None
        if options.time_budget_seconds is not None:
            deadline = self.clock() + options.time_budget_seconds

        filtered_by_policy = 0
        below_threshold = 0
        evaluated = 0
        budget_exhausted = False
        scored: List[MatchResult] = []
        accepted: List[Accepted] = []

        for donor, outcome in self.iter_evaluations(patient, donors, policy, options):
            evaluated += 1

            if isinstance(outcome, Rejected):
                if outcome.reason.is_hard_filter:
                    filtered_by_policy += 1
                else:
                    below_threshold += 1
                    scored.append(outcome.result)
            else:
                scored.append(outcome.result)
                accepted.append(outcome)

            if deadline is not None and evaluated < len(donors) and self.clock() >= deadline:
                budget_exhausted = True
                logger.warning(
                    f"Time budget of {options.time_budget_seconds}s exhausted after "
                    f"{evaluated}/{len(donors)} candidates"
                )
                break

        ranked = rank_results([outcome.result for outcome in accepted])
        matches = ranked[:options.max_results]

        summary = MatchSummary(
            total_candidates=len(donors),
            candidates_evaluated=evaluated,
            filtered_by_policy=filtered_by_policy,
            below_threshold=below_threshold,
            above_threshold=sum(1 for outcome in accepted if outcome.meets_thresholds),
            best_score=ranked[0].score if ranked else 0.0,
            average_score=round(sum(r.score for r in scored) / len(scored), 3) if scored else 0.0,
            budget_exhausted=budget_exhausted,
        )

        logger.info(
            f"Matched patient {patient.id} ({patient.organ_type.value}): "
            f"{len(matches)} returned, {filtered_by_policy} filtered, "
            f"{below_threshold} below threshold of {len(donors)} candidates"
        )

        return MatchBatchResult(matches=matches, summary=summary, policy=policy)

    def match_from_supplier(
        self,
        patient: Patient,
        supplier: "DonorCandidateSupplier",
        filters: Optional[DonorFilters] = None,
        options: Optional[MatchOptions] = None
    ) -> MatchBatchResult:
        """Pull candidates from a supplier, then match them"""
        donors = supplier.list_eligible_donors(patient.organ_type, filters or DonorFilters())
        return self.match_patient_to_donors(patient, donors, options)

    def check_compatibility(self, patient: Patient, donor: Donor) -> CompatibilityReport:
        """
        Detailed compatibility check for a single pair

        Low scores are included so the caller sees the full breakdown; only
        hard-filter failures make the pair incompatible.
        """
        outcome = self.evaluate(patient, donor, MatchOptions(max_results=1, include_low_scores=True))

        if isinstance(outcome, Rejected):
            return CompatibilityReport(
                compatible=False,
                rejection=outcome,
                recommendations=[f"Not compatible for transplantation ({outcome.reason.value})"],
            )

        result = outcome.result
        if result.warnings:
            recommendations = [f"Consider: {warning}" for warning in result.warnings]
        else:
            recommendations = ["Excellent match - proceed with allocation"]

        return CompatibilityReport(compatible=True, details=result, recommendations=recommendations)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_results(
        self,
        results: Sequence[MatchResult],
        fmt: Union[ExportFormat, str] = ExportFormat.JSON
    ) -> str:
        return export_results(results, fmt)
