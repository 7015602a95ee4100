"""Matching engine modules"""

from organmatch.matching.errors import PolicyNotFoundError
from organmatch.matching.match_orchestrator import MatchOrchestrator
from organmatch.matching.policy_store import PolicyStore
from organmatch.matching.result_exporter import ExportFormat, export_results
from organmatch.matching.scoring_engine import BlendConfig, ScoringEngine

__all__ = [
    "BlendConfig",
    "ExportFormat",
    "MatchOrchestrator",
    "PolicyNotFoundError",
    "PolicyStore",
    "ScoringEngine",
    "export_results",
]
