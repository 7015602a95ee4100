"""Data schema definitions for patients, donors, policies and match results"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from organmatch.config import settings


UNKNOWN_ALLELE = "UNKNOWN"


class OrganType(str, Enum):
    """Organ types handled by the engine"""
    KIDNEY = "KIDNEY"
    LIVER = "LIVER"
    HEART = "HEART"
    LUNG = "LUNG"
    PANCREAS = "PANCREAS"
    CORNEA = "CORNEA"
    SKIN = "SKIN"
    BONE_MARROW = "BONE_MARROW"
    BONE = "BONE"

    @classmethod
    def _missing_(cls, value):
        # Case-insensitive names plus the short codes used by hospital records
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_").replace("-", "_")
            key = _ORGAN_CODES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        return None


_ORGAN_CODES = {
    "KID": "KIDNEY",
    "LIV": "LIVER",
    "HRT": "HEART",
    "LNG": "LUNG",
    "PAN": "PANCREAS",
    "COR": "CORNEA",
    "SKN": "SKIN",
    "BM": "BONE_MARROW",
    "BON": "BONE",
}


def _coerce_organ(value):
    if isinstance(value, str):
        return OrganType(value)
    return value


OrganField = Annotated[OrganType, BeforeValidator(_coerce_organ)]


# ═══════════════════════════════════════════════════════════════════
# Patients and donors
# ═══════════════════════════════════════════════════════════════════

class HLATyping(BaseModel):
    """Six-slot tissue typing record (two alleles each for loci A, B, DR)"""

    model_config = ConfigDict(frozen=True)

    a1: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("a1", "A1"))
    a2: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("a2", "A2"))
    b1: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("b1", "B1"))
    b2: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("b2", "B2"))
    dr1: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("dr1", "DR1"))
    dr2: str = Field(UNKNOWN_ALLELE, validation_alias=AliasChoices("dr2", "DR2"))

    @field_validator("*", mode="before")
    @classmethod
    def _normalize_allele(cls, value):
        if value is None:
            return UNKNOWN_ALLELE
        text = str(value).strip().upper()
        return text or UNKNOWN_ALLELE

    def alleles(self) -> tuple[str, ...]:
        return (self.a1, self.a2, self.b1, self.b2, self.dr1, self.dr2)


class VerificationBundle(BaseModel):
    """Document verification state resolved before matching"""

    model_config = ConfigDict(frozen=True)

    doc_hash: Optional[str] = None
    storage_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("storage_ref", "ipfs_cid"),
    )
    verified: bool = Field(
        default=False,
        validation_alias=AliasChoices("verified", "ocr_verified"),
    )
    score_bps: Optional[int] = Field(
        default=None,
        ge=0,
        le=10000,
        validation_alias=AliasChoices("score_bps", "ocr_score_bps"),
    )
    attested: bool = False  # set once a verification provider confirmed the record


class Donor(BaseModel):
    """Donor candidate"""

    model_config = ConfigDict(frozen=True)

    id: str
    organ_type: OrganField
    blood_group: str = ""

    # Body
    age: Optional[float] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    height: Optional[float] = Field(None, ge=0)

    # Location
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    hla: Optional[HLATyping] = Field(
        default=None,
        validation_alias=AliasChoices("hla", "HLA"),
    )
    hospital_id: Optional[str] = None
    verification: Optional[VerificationBundle] = None


class Patient(Donor):
    """Transplant recipient"""

    urgency: Optional[float] = Field(None, ge=0, le=100)
    waitlist_days: Optional[int] = Field(None, ge=0)
    medical_urgency: Optional[float] = None


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


# ═══════════════════════════════════════════════════════════════════
# Policies
# ═══════════════════════════════════════════════════════════════════

class PolicyWeights(BaseModel):
    """Per-criterion weights; they need not sum to 1"""

    model_config = ConfigDict(frozen=True)

    w_blood: float = Field(0.0, ge=0.0)
    w_hla: float = Field(0.0, ge=0.0)
    w_urgency: float = Field(0.0, ge=0.0)
    w_distance: float = Field(0.0, ge=0.0)
    w_age: float = Field(0.0, ge=0.0)
    w_weight: float = Field(0.0, ge=0.0)
    w_verification: float = Field(0.0, ge=0.0)

    def as_tuple(self) -> tuple[float, ...]:
        """Weights in breakdown order"""
        return (
            self.w_blood,
            self.w_hla,
            self.w_urgency,
            self.w_distance,
            self.w_age,
            self.w_weight,
            self.w_verification,
        )


class PolicyConstraints(BaseModel):
    """Hard constraints"""

    model_config = ConfigDict(frozen=True)

    max_distance_km: float = Field(2000.0, gt=0.0)
    require_abo_compat: bool = True
    use_rh_factor: bool = True
    pediatric_priority: bool = False
    require_verification: bool = Field(
        default=False,
        validation_alias=AliasChoices("require_verification", "require_blockchain_verification"),
    )
    min_verification_score_bps: int = Field(
        default=8000,
        ge=0,
        le=10000,
        validation_alias=AliasChoices("min_verification_score_bps", "min_ocr_score_bps"),
    )
    max_age_difference: float = Field(20.0, ge=0.0)
    max_weight_difference_pct: float = Field(
        default=40.0,
        ge=0.0,
        validation_alias=AliasChoices("max_weight_difference_pct", "max_weight_difference_percent"),
    )


class PolicyThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_match_score: float = Field(0.0, ge=0.0)
    min_confidence: float = Field(0.0, ge=0.0, le=1.0)
    critical_urgency_threshold: float = Field(90.0, ge=0.0, le=100.0)


class Policy(BaseModel):
    """Matching policy for one organ type"""

    model_config = ConfigDict(frozen=True)

    organ_type: OrganField
    is_active: bool = True
    version: str = Field(default_factory=lambda: settings.policy_version)
    revision: int = Field(1, ge=1)
    weights: PolicyWeights = Field(default_factory=PolicyWeights)
    constraints: PolicyConstraints = Field(default_factory=PolicyConstraints)
    thresholds: PolicyThresholds = Field(default_factory=PolicyThresholds)

    @property
    def version_tag(self) -> str:
        return f"{self.version}-r{self.revision}"


class PolicyWeightsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    w_blood: Optional[float] = Field(None, ge=0.0)
    w_hla: Optional[float] = Field(None, ge=0.0)
    w_urgency: Optional[float] = Field(None, ge=0.0)
    w_distance: Optional[float] = Field(None, ge=0.0)
    w_age: Optional[float] = Field(None, ge=0.0)
    w_weight: Optional[float] = Field(None, ge=0.0)
    w_verification: Optional[float] = Field(None, ge=0.0)


class PolicyConstraintsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_distance_km: Optional[float] = Field(None, gt=0.0)
    require_abo_compat: Optional[bool] = None
    use_rh_factor: Optional[bool] = None
    pediatric_priority: Optional[bool] = None
    require_verification: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("require_verification", "require_blockchain_verification"),
    )
    min_verification_score_bps: Optional[int] = Field(
        default=None,
        ge=0,
        le=10000,
        validation_alias=AliasChoices("min_verification_score_bps", "min_ocr_score_bps"),
    )
    max_age_difference: Optional[float] = Field(None, ge=0.0)
    max_weight_difference_pct: Optional[float] = Field(
        default=None,
        ge=0.0,
        validation_alias=AliasChoices("max_weight_difference_pct", "max_weight_difference_percent"),
    )


class PolicyThresholdsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_match_score: Optional[float] = Field(None, ge=0.0)
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    critical_urgency_threshold: Optional[float] = Field(None, ge=0.0, le=100.0)


class PolicyUpdate(BaseModel):
    """Partial policy; unset fields keep their prior values when merged"""

    model_config = ConfigDict(extra="forbid")

    is_active: Optional[bool] = None
    version: Optional[str] = None
    weights: Optional[PolicyWeightsUpdate] = None
    constraints: Optional[PolicyConstraintsUpdate] = None
    thresholds: Optional[PolicyThresholdsUpdate] = None


# ═══════════════════════════════════════════════════════════════════
# Match results
# ═══════════════════════════════════════════════════════════════════

class MatchBreakdown(BaseModel):
    """Per-criterion component scores (0-1)"""

    model_config = ConfigDict(frozen=True)

    blood: float
    hla: float
    urgency: float
    distance: float
    age: float
    weight: float
    verification: float


class PolicyCompliance(BaseModel):
    model_config = ConfigDict(frozen=True)

    pediatric_priority: bool
    emergency_case: bool
    geographic_preference: bool
    verification_satisfied: bool


class MatchMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Wall-clock time is kept off the serialized form so audit exports stay byte-stable
    calculation_time_ms: float = Field(default=0.0, exclude=True)
    policy_version: str
    ai_model_version: Optional[str] = None


class MatchResult(BaseModel):
    """Scored donor that passed every hard constraint"""

    model_config = ConfigDict(frozen=True)

    donor: Donor
    score: float
    confidence: float
    breakdown: MatchBreakdown
    policy_compliance: PolicyCompliance
    warnings: list[str] = Field(default_factory=list)
    metadata: MatchMetadata

    @property
    def donor_id(self) -> str:
        return self.donor.id


class RejectionReason(str, Enum):
    """Why a candidate was excluded"""
    ORGAN_TYPE = "organ type differs"
    BLOOD = "blood incompatible"
    DISTANCE = "out of range"
    AGE = "age gap"
    WEIGHT = "weight gap"
    VERIFICATION = "unverified"
    BELOW_THRESHOLD = "below threshold"

    @property
    def is_hard_filter(self) -> bool:
        return self is not RejectionReason.BELOW_THRESHOLD


class Accepted(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["accepted"] = "accepted"
    result: MatchResult
    meets_thresholds: bool = True


class Rejected(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["rejected"] = "rejected"
    donor_id: str
    reason: RejectionReason
    detail: str = ""
    result: Optional[MatchResult] = None  # only for below-threshold rejections


Evaluation = Union[Accepted, Rejected]


class MatchOptions(BaseModel):
    """Per-request matching options"""

    max_results: int = Field(default_factory=lambda: settings.default_max_results, ge=1)
    include_low_scores: bool = False
    use_blend: bool = False
    policy_overrides: Optional[PolicyUpdate] = None
    time_budget_seconds: Optional[float] = Field(None, gt=0.0)


class MatchSummary(BaseModel):
    total_candidates: int
    candidates_evaluated: int
    filtered_by_policy: int
    below_threshold: int
    above_threshold: int
    best_score: float
    average_score: float
    budget_exhausted: bool = False


class MatchBatchResult(BaseModel):
    matches: list[MatchResult]
    summary: MatchSummary
    policy: Policy


class CompatibilityReport(BaseModel):
    """Single patient/donor compatibility check"""

    compatible: bool
    details: Optional[MatchResult] = None
    rejection: Optional[Rejected] = None
    recommendations: list[str] = Field(default_factory=list)


class DonorFilters(BaseModel):
    """Pre-filters applied by a candidate supplier"""

    min_age: Optional[float] = None
    max_age: Optional[float] = None
    min_weight: Optional[float] = None
    max_weight: Optional[float] = None
    blood_groups: list[str] = Field(default_factory=list)
    cities: list[str] = Field(default_factory=list)
    verified_only: bool = False
    limit: int = Field(100, ge=1)
