"""Errors raised by the matching engine"""


class OrganMatchError(Exception):
    """Base class for engine errors"""


class PolicyNotFoundError(OrganMatchError, LookupError):
    """No active policy exists for the requested organ type"""

    def __init__(self, organ_type):
        self.organ_type = getattr(organ_type, "value", organ_type)
        super().__init__(f"No active policy found for organ type: {self.organ_type}")


class UnsupportedExportFormatError(OrganMatchError, ValueError):
    """Export format is neither json nor tabular"""


class VerificationLookupError(OrganMatchError):
    """A verification provider could not reach its attestation ledger"""
