"""Scoring Engine - evaluate one patient/donor pair against a policy"""

import time
from typing import Dict, Optional, Tuple

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from organmatch.config import settings
from organmatch.data.schema import (
    Accepted,
    Donor,
    Evaluation,
    MatchBreakdown,
    MatchMetadata,
    MatchOptions,
    MatchResult,
    Patient,
    Policy,
    PolicyCompliance,
    Rejected,
    RejectionReason,
)
from organmatch.matching.compatibility_rules import (
    NEUTRAL_SCORE,
    blood_compatible,
    distance_km,
    meets_verification,
    tissue_match_score,
    verification_score,
)
from organmatch.matching.locations import LocationResolver, StaticLocationResolver


# Breakdown order shared by policy weights, exports and the blend
COMPONENTS = ("blood", "hla", "urgency", "distance", "age", "weight", "verification")

BLEND_FEATURES = ("blood", "hla", "urgency", "distance", "age")

# Fixed blend weights; a trained model would replace these
DEFAULT_BLEND_WEIGHTS = {
    "blood": 0.95,
    "hla": 0.90,
    "urgency": 0.85,
    "distance": 0.80,
    "age": 0.85,
}

WARNING_TISSUE_INCOMPLETE = "HLA data incomplete"
WARNING_LONG_DISTANCE = "Long distance transport required"
WARNING_PEDIATRIC = "Pediatric case with non-critical urgency"
WARNING_VERIFICATION = "Document verification below recommended threshold"


class BlendConfig(BaseModel):
    """
    Deterministic secondary scorer

    A normalised weighted mean of a subset of the component scores, using
    weights fixed at configuration time. It marks where a learned model
    would plug in; nothing here is learned.
    """

    model_config = ConfigDict(frozen=True)

    weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_BLEND_WEIGHTS))
    version: str = Field(default_factory=lambda: settings.blend_model_version)

    def predict(self, components: Dict[str, float]) -> float:
        weights = np.array([self.weights.get(name, 0.0) for name in BLEND_FEATURES], dtype=float)
        values = np.array([components[name] for name in BLEND_FEATURES], dtype=float)

        total = weights.sum()
        if total <= 0:
            return NEUTRAL_SCORE

        return float(min(1.0, np.dot(weights, values) / total))


DEFAULT_BLEND = BlendConfig()


class ScoringEngine:
    """
    Score a single (patient, donor, policy) triple

    Pipeline (fixed order):
    1. Hard filters - first failure short-circuits with a rejection reason
    2. Component scores (0-1) for each weighted criterion
    3. Rule score - policy weights applied as given, never renormalised
    4. Optional deterministic blend
    5. Confidence from data completeness and final score
    6. Policy compliance flags
    7. Warnings
    8. Threshold gate

    The engine keeps no per-request state and knows nothing about other
    candidates.
    """

    DEFAULT_URGENCY = 50.0
    AGE_SCALE_YEARS = 50.0
    ADULT_AGE = 18

    RULE_SHARE = 0.7
    BLEND_SHARE = 0.3
    COMPLETENESS_SHARE = 0.6
    SCORE_SHARE = 0.4

    CRITICAL_URGENCY_SCORE = 0.8
    VERIFICATION_FLOOR = 0.8
    LONG_DISTANCE_FRACTION = 0.8
    PREFERRED_DISTANCE_FRACTION = 0.5

    def __init__(self,
                 resolver: Optional[LocationResolver] = None,
                 blend: Optional[BlendConfig] = None,
                 unresolved_distance_km: Optional[float] = None):
        """
        Initialize scoring engine

        Args:
            resolver: Location resolver (default: built-in city table)
            blend: Deterministic blend configuration; None disables blending
            unresolved_distance_km: Distance reported for unknown place names
        """
        self.resolver = resolver if resolver is not None else StaticLocationResolver()
        self.blend = blend
        self.unresolved_distance_km = (
            unresolved_distance_km if unresolved_distance_km is not None
            else settings.unresolved_distance_km
        )

    def evaluate(
        self,
        patient: Patient,
        donor: Donor,
        policy: Policy,
        options: Optional[MatchOptions] = None
    ) -> Evaluation:
        """
        Evaluate one donor for a patient

        Returns:
            Accepted(result) when the donor passes every hard filter and the
            threshold gate (or low scores were requested), otherwise
            Rejected(reason)
        """
        started = time.perf_counter()
        options = options or MatchOptions()

        rejection, distance = self.check_hard_filters(patient, donor, policy)
        if rejection is not None:
            logger.debug(f"Donor {donor.id} rejected: {rejection.reason.value} ({rejection.detail})")
            return rejection

        components = self.component_scores(patient, donor, policy, distance)
        rule_score = self.rule_score(components, policy)

        model_version = None
        if options.use_blend and self.blend is not None:
            blend_score = self.blend.predict(components)
            final_score = self.RULE_SHARE * rule_score + self.BLEND_SHARE * blend_score
            model_version = self.blend.version
        else:
            final_score = rule_score
        final_score = min(1.0, final_score)

        confidence = min(
            1.0,
            self.COMPLETENESS_SHARE * self.data_completeness(patient, donor)
            + self.SCORE_SHARE * final_score
        )

        result = MatchResult(
            donor=donor,
            score=round(final_score, 4),
            confidence=round(confidence, 3),
            breakdown=MatchBreakdown(**{name: round(value, 3) for name, value in components.items()}),
            policy_compliance=self.policy_compliance(patient, donor, policy, components, distance),
            warnings=self.collect_warnings(patient, donor, policy, components, distance),
            metadata=MatchMetadata(
                calculation_time_ms=round((time.perf_counter() - started) * 1000, 3),
                policy_version=policy.version_tag,
                ai_model_version=model_version,
            ),
        )

        thresholds = policy.thresholds
        meets_thresholds = (
            final_score >= thresholds.min_match_score
            and confidence >= thresholds.min_confidence
        )
        if not meets_thresholds and not options.include_low_scores:
            return Rejected(
                donor_id=donor.id,
                reason=RejectionReason.BELOW_THRESHOLD,
                detail=f"score={result.score} confidence={result.confidence}",
                result=result,
            )

        return Accepted(result=result, meets_thresholds=meets_thresholds)

    def check_hard_filters(
        self,
        patient: Patient,
        donor: Donor,
        policy: Policy
    ) -> Tuple[Optional[Rejected], Optional[float]]:
        """
        Apply hard constraints in their fixed order

        Returns:
            (rejection or None, distance in km or None when a location is missing)
        """
        constraints = policy.constraints

        def reject(reason: RejectionReason, detail: str):
            return Rejected(donor_id=donor.id, reason=reason, detail=detail), distance

        distance = None

        if donor.organ_type != patient.organ_type:
            return reject(
                RejectionReason.ORGAN_TYPE,
                f"{donor.organ_type.value} != {patient.organ_type.value}"
            )

        if constraints.require_abo_compat and not blood_compatible(
            patient.blood_group, donor.blood_group, constraints.use_rh_factor
        ):
            return reject(RejectionReason.BLOOD, f"{donor.blood_group} -> {patient.blood_group}")

        distance = self.distance_between(patient, donor)
        if distance is not None and distance > constraints.max_distance_km:
            return reject(
                RejectionReason.DISTANCE,
                f"{distance:.1f} km > {constraints.max_distance_km} km"
            )

        if patient.age is not None and donor.age is not None:
            age_gap = abs(patient.age - donor.age)
            if age_gap > constraints.max_age_difference:
                return reject(
                    RejectionReason.AGE,
                    f"{age_gap:g} years > {constraints.max_age_difference:g}"
                )

        if patient.weight is not None and donor.weight is not None:
            heavier = max(patient.weight, donor.weight)
            if heavier > 0:
                weight_gap = abs(patient.weight - donor.weight) / heavier
                if weight_gap > constraints.max_weight_difference_pct / 100:
                    return reject(
                        RejectionReason.WEIGHT,
                        f"{weight_gap * 100:.1f}% > {constraints.max_weight_difference_pct:g}%"
                    )

        if constraints.require_verification:
            minimum = constraints.min_verification_score_bps
            if not (meets_verification(patient.verification, minimum)
                    and meets_verification(donor.verification, minimum)):
                return reject(RejectionReason.VERIFICATION, f"both sides need >= {minimum} bps")

        return None, distance

    def distance_between(self, patient: Patient, donor: Donor) -> Optional[float]:
        """Distance in km, or None when either city is missing"""
        if not patient.city or not donor.city:
            return None
        return distance_km(patient.city, donor.city, self.resolver, self.unresolved_distance_km)

    def component_scores(
        self,
        patient: Patient,
        donor: Donor,
        policy: Policy,
        distance: Optional[float]
    ) -> Dict[str, float]:
        """Per-criterion scores in breakdown order"""
        constraints = policy.constraints

        blood = 1.0 if blood_compatible(
            patient.blood_group, donor.blood_group, constraints.use_rh_factor
        ) else 0.0

        urgency = patient.urgency if patient.urgency is not None else self.DEFAULT_URGENCY

        if distance is None:
            distance_score = NEUTRAL_SCORE
        else:
            distance_score = max(0.0, 1 - distance / constraints.max_distance_km)

        if patient.age is not None and donor.age is not None:
            age_score = max(0.0, 1 - abs(patient.age - donor.age) / self.AGE_SCALE_YEARS)
        else:
            age_score = NEUTRAL_SCORE

        weight_score = NEUTRAL_SCORE
        if patient.weight is not None and donor.weight is not None:
            heavier = max(patient.weight, donor.weight)
            if heavier > 0:
                weight_score = max(0.0, 1 - abs(patient.weight - donor.weight) / heavier)

        return {
            "blood": blood,
            "hla": tissue_match_score(patient.hla, donor.hla),
            "urgency": min(1.0, urgency / 100),
            "distance": distance_score,
            "age": age_score,
            "weight": weight_score,
            "verification": min(
                verification_score(patient.verification),
                verification_score(donor.verification)
            ),
        }

    def rule_score(self, components: Dict[str, float], policy: Policy) -> float:
        """Weighted sum with the policy's weights exactly as authored"""
        weights = np.array(policy.weights.as_tuple(), dtype=float)
        values = np.array([components[name] for name in COMPONENTS], dtype=float)
        return float(np.dot(weights, values))

    def data_completeness(self, patient: Patient, donor: Donor) -> float:
        """Fraction of the five data-presence checks satisfied"""
        checks = [
            bool(patient.blood_group) and bool(donor.blood_group),
            patient.hla is not None and donor.hla is not None,
            bool(patient.city) and bool(donor.city),
            patient.urgency is not None,
            (patient.verification is not None and patient.verification.verified
             and donor.verification is not None and donor.verification.verified),
        ]
        return sum(checks) / len(checks)

    def policy_compliance(
        self,
        patient: Patient,
        donor: Donor,
        policy: Policy,
        components: Dict[str, float],
        distance: Optional[float]
    ) -> PolicyCompliance:
        constraints = policy.constraints
        is_minor = patient.age is not None and patient.age < self.ADULT_AGE

        verification_short = (
            verification_score(patient.verification) < self.VERIFICATION_FLOOR
            or verification_score(donor.verification) < self.VERIFICATION_FLOOR
        )

        return PolicyCompliance(
            pediatric_priority=not (
                constraints.pediatric_priority
                and is_minor
                and components["urgency"] <= self.CRITICAL_URGENCY_SCORE
            ),
            emergency_case=not (
                patient.urgency is not None
                and patient.urgency >= policy.thresholds.critical_urgency_threshold
            ),
            geographic_preference=(
                distance is not None
                and distance <= constraints.max_distance_km * self.PREFERRED_DISTANCE_FRACTION
            ),
            verification_satisfied=not (constraints.require_verification and verification_short),
        )

    def collect_warnings(
        self,
        patient: Patient,
        donor: Donor,
        policy: Policy,
        components: Dict[str, float],
        distance: Optional[float]
    ) -> list[str]:
        """Informational warnings, in a fixed order"""
        warnings = []

        if patient.hla is None or donor.hla is None:
            warnings.append(WARNING_TISSUE_INCOMPLETE)

        max_distance = policy.constraints.max_distance_km
        if distance is not None and distance > max_distance * self.LONG_DISTANCE_FRACTION:
            warnings.append(WARNING_LONG_DISTANCE)

        if (patient.age is not None and patient.age < self.ADULT_AGE
                and components["urgency"] < self.CRITICAL_URGENCY_SCORE):
            warnings.append(WARNING_PEDIATRIC)

        if components["verification"] < self.VERIFICATION_FLOOR:
            warnings.append(WARNING_VERIFICATION)

        return warnings
