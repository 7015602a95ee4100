"""Donor candidate supply - the interface the engine pulls candidates through"""

from typing import Iterable, List, Protocol

from loguru import logger

from organmatch.data.schema import Donor, DonorFilters, OrganType
from organmatch.matching.compatibility_rules import meets_verification, parse_blood_group


VERIFIED_ONLY_MIN_BPS = 8000


class DonorCandidateSupplier(Protocol):
    """Source of donor candidates for one organ type"""

    def list_eligible_donors(self, organ_type: OrganType, filters: DonorFilters) -> List[Donor]:
        ...


def _normalize_group(group: str) -> str:
    parsed = parse_blood_group(group)
    if parsed is None:
        return group.strip().upper()
    abo, rh = parsed
    return f"{abo}{rh or ''}"


class InMemoryDonorSupplier:
    """
    Supplier backed by a list of donors

    Applies the same pre-filters a registry query would: organ type, age and
    weight bounds, blood-group allowlist, city allowlist, verified-only and a
    result limit. Insertion order is preserved.
    """

    def __init__(self, donors: Iterable[Donor] = ()):
        self._donors: List[Donor] = list(donors)

    def add(self, donor: Donor) -> None:
        self._donors.append(donor)

    def __len__(self) -> int:
        return len(self._donors)

    def list_eligible_donors(self, organ_type: OrganType, filters: DonorFilters) -> List[Donor]:
        groups = {_normalize_group(g) for g in filters.blood_groups}
        cities = {c.strip().lower() for c in filters.cities}

        eligible = []
        for donor in self._donors:
            if donor.organ_type != organ_type:
                continue
            if filters.min_age is not None and (donor.age is None or donor.age < filters.min_age):
                continue
            if filters.max_age is not None and (donor.age is None or donor.age > filters.max_age):
                continue
            if filters.min_weight is not None and (donor.weight is None or donor.weight < filters.min_weight):
                continue
            if filters.max_weight is not None and (donor.weight is None or donor.weight > filters.max_weight):
                continue
            if groups and _normalize_group(donor.blood_group) not in groups:
                continue
            if cities and (not donor.city or donor.city.strip().lower() not in cities):
                continue
            if filters.verified_only and not meets_verification(donor.verification, VERIFIED_ONLY_MIN_BPS):
                continue

            eligible.append(donor)
            if len(eligible) >= filters.limit:
                break

        logger.debug(f"Supplier returned {len(eligible)} {organ_type.value} donors")
        return eligible
