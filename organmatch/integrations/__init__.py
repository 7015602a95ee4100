"""Collaborators the engine consumes: donor supply and document verification"""

from organmatch.integrations.candidates import DonorCandidateSupplier, InMemoryDonorSupplier
from organmatch.integrations.verification import (
    AttestationRecord,
    InMemoryVerificationProvider,
    VerificationProvider,
    apply_attestation,
)

__all__ = [
    "AttestationRecord",
    "DonorCandidateSupplier",
    "InMemoryDonorSupplier",
    "InMemoryVerificationProvider",
    "VerificationProvider",
    "apply_attestation",
]
