"""Verification provider - augment verification bundles from an attestation ledger

The matching engine never calls a provider itself; callers resolve
verification before handing patients and donors to the engine.
"""

from typing import Dict, Iterable, Optional, Protocol, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from organmatch.data.schema import Donor, VerificationBundle
from organmatch.matching.errors import VerificationLookupError


EMPTY_DOC_HASH = "0x" + "0" * 64

Subject = TypeVar("Subject", bound=Donor)


class AttestationRecord(BaseModel):
    """Latest ledger entry for a document hash"""

    model_config = ConfigDict(frozen=True)

    doc_hash: str
    verified: bool
    score_bps: int = Field(ge=0, le=10000)
    storage_ref: Optional[str] = None


class VerificationProvider(Protocol):
    def lookup(self, doc_hash: str) -> Optional[AttestationRecord]:
        ...


class InMemoryVerificationProvider:
    """Provider backed by a dict of attestation records keyed by document hash"""

    def __init__(self, records: Iterable[AttestationRecord] = ()):
        self._records: Dict[str, AttestationRecord] = {r.doc_hash: r for r in records}

    def record(self, attestation: AttestationRecord) -> None:
        self._records[attestation.doc_hash] = attestation

    def lookup(self, doc_hash: str) -> Optional[AttestationRecord]:
        return self._records.get(doc_hash)


def _is_empty_hash(doc_hash: Optional[str]) -> bool:
    return not doc_hash or doc_hash.lower() == EMPTY_DOC_HASH


def apply_attestation(subject: Subject, provider: VerificationProvider) -> Subject:
    """
    Return a copy of a patient/donor with its verification bundle updated

    Subjects without a document hash, or whose hash has no ledger record,
    are returned unchanged. A failing lookup is logged and leaves the
    subject unchanged so one unreachable ledger does not abort a batch.
    """
    bundle = subject.verification
    if bundle is None or _is_empty_hash(bundle.doc_hash):
        return subject

    try:
        record = provider.lookup(bundle.doc_hash)
    except VerificationLookupError as e:
        logger.warning(f"Could not verify document for {subject.id}: {e}")
        return subject

    if record is None or _is_empty_hash(record.doc_hash):
        return subject

    updated = VerificationBundle(
        doc_hash=bundle.doc_hash,
        storage_ref=record.storage_ref or bundle.storage_ref,
        verified=record.verified,
        score_bps=record.score_bps,
        attested=True,
    )
    return subject.model_copy(update={"verification": updated})
