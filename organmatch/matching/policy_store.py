"""Policy Store - per-organ matching policies with copy-on-write updates"""

import json
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from loguru import logger

from organmatch.data.schema import OrganType, Policy, PolicyUpdate
from organmatch.matching.errors import PolicyNotFoundError


PolicyPatch = Union[PolicyUpdate, Mapping[str, Any]]


# Defaults carried over from the hospital network's original configuration
DEFAULT_POLICIES: Dict[OrganType, Dict[str, Any]] = {
    OrganType.KIDNEY: {
        "organ_type": OrganType.KIDNEY,
        "is_active": True,
        "weights": {
            "w_blood": 0.25,
            "w_hla": 0.30,
            "w_urgency": 0.20,
            "w_distance": 0.10,
            "w_age": 0.05,
            "w_weight": 0.05,
            "w_verification": 0.05,
        },
        "constraints": {
            "max_distance_km": 2000,
            "require_abo_compat": True,
            "use_rh_factor": True,
            "pediatric_priority": True,
            "require_verification": True,
            "min_verification_score_bps": 8000,
            "max_age_difference": 15,
            "max_weight_difference_pct": 30,
        },
        "thresholds": {
            "min_match_score": 0.60,
            "min_confidence": 0.55,
            "critical_urgency_threshold": 90,
        },
    },
    OrganType.LIVER: {
        "organ_type": OrganType.LIVER,
        "is_active": True,
        "weights": {
            "w_blood": 0.30,
            "w_hla": 0.15,
            "w_urgency": 0.30,
            "w_distance": 0.15,
            "w_age": 0.05,
            "w_weight": 0.05,
            "w_verification": 0.00,
        },
        "constraints": {
            "max_distance_km": 1500,
            "require_abo_compat": True,
            "use_rh_factor": False,
            "pediatric_priority": True,
            "require_verification": False,
            "min_verification_score_bps": 7000,
            "max_age_difference": 20,
            "max_weight_difference_pct": 40,
        },
        "thresholds": {
            "min_match_score": 0.65,
            "min_confidence": 0.60,
            "critical_urgency_threshold": 95,
        },
    },
}


def _deep_merge(base: Dict[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_policy(policy: Policy, partial: PolicyPatch) -> Policy:
    """
    Merge a partial policy onto an existing one

    Fields absent from the patch keep their prior values, including
    individual weights, constraints and thresholds.

    Args:
        policy: Current policy snapshot
        partial: PolicyUpdate or plain mapping with any subset of fields

    Returns:
        New validated Policy (the input is not modified)
    """
    update = partial if isinstance(partial, PolicyUpdate) else PolicyUpdate.model_validate(partial)
    patch = update.model_dump(exclude_none=True)
    return Policy.model_validate(_deep_merge(policy.model_dump(), patch))


class PolicyStore:
    """
    Holds one Policy per organ type

    Reads return the current immutable snapshot without locking. Updates
    build a complete new map and swap the reference under a write lock, so
    a match in flight always sees a single consistent policy.
    """

    def __init__(self, policies: Optional[Iterable[Policy]] = None):
        self._write_lock = threading.Lock()
        self._policies: Mapping[OrganType, Policy] = MappingProxyType(
            {policy.organ_type: policy for policy in (policies or [])}
        )

    @classmethod
    def with_defaults(cls) -> "PolicyStore":
        """Store seeded with the built-in kidney and liver policies"""
        return cls(Policy.model_validate(raw) for raw in DEFAULT_POLICIES.values())

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PolicyStore":
        """
        Load policies from a JSON file

        The file holds either a list of policies or an object keyed by
        organ type whose values are policies (organ_type may be omitted).
        """
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        if isinstance(raw, dict):
            entries = [{"organ_type": organ, **body} for organ, body in raw.items()]
        else:
            entries = list(raw)

        policies = [Policy.model_validate(entry) for entry in entries]
        logger.info(f"Loaded {len(policies)} policies from {path}")
        return cls(policies)

    def get(self, organ_type: Union[OrganType, str]) -> Optional[Policy]:
        return self._policies.get(OrganType(organ_type))

    def snapshot(self) -> Mapping[OrganType, Policy]:
        """Current read-only policy map"""
        return self._policies

    def organ_types(self) -> list[OrganType]:
        return sorted(self._policies, key=lambda organ: organ.value)

    def put(self, policy: Policy) -> None:
        """Install or replace a full policy"""
        with self._write_lock:
            updated = dict(self._policies)
            updated[policy.organ_type] = policy
            self._policies = MappingProxyType(updated)
        logger.info(f"Installed policy {policy.organ_type.value} {policy.version_tag}")

    def update(self, organ_type: Union[OrganType, str], partial: PolicyPatch) -> Policy:
        """
        Merge a partial update into the stored policy

        Args:
            organ_type: Organ whose policy changes
            partial: Fields to change; everything else is kept

        Returns:
            The new policy snapshot (revision incremented)

        Raises:
            PolicyNotFoundError: no policy is stored for organ_type
        """
        organ = OrganType(organ_type)
        with self._write_lock:
            current = self._policies.get(organ)
            if current is None:
                raise PolicyNotFoundError(organ)

            merged = merge_policy(current, partial)
            merged = merged.model_copy(update={"revision": current.revision + 1})

            updated = dict(self._policies)
            updated[organ] = merged
            self._policies = MappingProxyType(updated)

        logger.info(f"Updated policy {organ.value}: {current.version_tag} -> {merged.version_tag}")
        return merged
