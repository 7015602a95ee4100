"""Compatibility rules - blood groups, tissue typing, distance and verification

Pure functions with no I/O and no state. Malformed input never raises here:
blood groups that cannot be parsed are simply incompatible.
"""

import math
import re
from typing import Optional, Tuple

from organmatch.data.schema import Coordinates, HLATyping, UNKNOWN_ALLELE, VerificationBundle
from organmatch.matching.locations import LocationResolver


EARTH_RADIUS_KM = 6371.0

NEUTRAL_SCORE = 0.5
DEFAULT_VERIFIED_SCORE_BPS = 8000
BPS_SCALE = 10000

# Donor ABO group -> recipient ABO groups it can donate to
ABO_DONOR_TABLE = {
    "O": {"O", "A", "B", "AB"},
    "A": {"A", "AB"},
    "B": {"B", "AB"},
    "AB": {"AB"},
}

_BLOOD_GROUP_RE = re.compile(r"^(AB|A|B|O)\s*([+-])?$")


def parse_blood_group(text: Optional[str]) -> Optional[Tuple[str, Optional[str]]]:
    """
    Split a blood group string into its ABO letter(s) and Rh sign

    Args:
        text: e.g. "O-", "ab+", "A"

    Returns:
        (abo, rh) where rh is "+", "-" or None when the sign is missing,
        or None when the string is not a blood group at all
    """
    if not text:
        return None
    match = _BLOOD_GROUP_RE.match(text.strip().upper())
    if match is None:
        return None
    return match.group(1), match.group(2)


def blood_compatible(patient_group: Optional[str], donor_group: Optional[str], use_rh: bool) -> bool:
    """
    Check ABO (and optionally Rh) donor-to-recipient compatibility

    With use_rh set, an Rh-negative patient may only receive from Rh-negative
    donors, and a group without its Rh sign cannot be checked and fails closed.
    """
    patient = parse_blood_group(patient_group)
    donor = parse_blood_group(donor_group)
    if patient is None or donor is None:
        return False

    patient_abo, patient_rh = patient
    donor_abo, donor_rh = donor

    if patient_abo not in ABO_DONOR_TABLE[donor_abo]:
        return False

    if use_rh:
        if patient_rh is None or donor_rh is None:
            return False
        if patient_rh == "-" and donor_rh == "+":
            return False

    return True


def _known(allele: str) -> bool:
    return bool(allele) and allele != UNKNOWN_ALLELE


def comparable_loci(patient_hla: Optional[HLATyping], donor_hla: Optional[HLATyping]) -> int:
    """Number of HLA slots known on both sides"""
    if patient_hla is None or donor_hla is None:
        return 0
    return sum(
        1 for p, d in zip(patient_hla.alleles(), donor_hla.alleles())
        if _known(p) and _known(d)
    )


def tissue_match_score(patient_hla: Optional[HLATyping], donor_hla: Optional[HLATyping]) -> float:
    """
    Fraction of comparable HLA slots that match

    Slots are compared positionally (A1 with A1, ...). When no slot is
    known on both sides the score is neutral (0.5), never 0 or 1.
    """
    if patient_hla is None or donor_hla is None:
        return NEUTRAL_SCORE

    matches = 0
    total = 0
    for p, d in zip(patient_hla.alleles(), donor_hla.alleles()):
        if _known(p) and _known(d):
            total += 1
            if p == d:
                matches += 1

    return matches / total if total > 0 else NEUTRAL_SCORE


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometres"""
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lon / 2) ** 2
    )
    # rounding can push h just past 1 for near-antipodal points
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_km(
    location_a: str,
    location_b: str,
    resolver: LocationResolver,
    sentinel: float,
) -> float:
    """
    Distance between two named locations

    Names the resolver does not know return the sentinel, which is larger
    than any policy's maximum distance.
    """
    coords_a = resolver.resolve(location_a)
    coords_b = resolver.resolve(location_b)
    if coords_a is None or coords_b is None:
        return sentinel
    return haversine_km(coords_a, coords_b)


def verification_score(bundle: Optional[VerificationBundle]) -> float:
    """Normalised verification score; unverified is neutral, not zero"""
    if bundle is None or not bundle.verified:
        return NEUTRAL_SCORE
    score_bps = bundle.score_bps if bundle.score_bps is not None else DEFAULT_VERIFIED_SCORE_BPS
    return score_bps / BPS_SCALE


def meets_verification(bundle: Optional[VerificationBundle], min_score_bps: int) -> bool:
    """Hard verification requirement: verified with a recorded score at or above the minimum"""
    if bundle is None or not bundle.verified:
        return False
    return (bundle.score_bps or 0) >= min_score_bps
