"""Run the matching engine on a JSON request file

The request file holds one patient and a donor pool:

    {"patient": {...}, "donors": [{...}, ...]}

Usage:
    python scripts/run_matching.py request.json
    python scripts/run_matching.py request.json --format tabular --max-results 5
    python scripts/run_matching.py request.json --blend --policies policies.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loguru import logger

from organmatch.config import configure_logging
from organmatch.data.schema import Donor, MatchOptions, Patient
from organmatch.matching import MatchOrchestrator, PolicyNotFoundError, PolicyStore


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Rank donor candidates for a patient")
    parser.add_argument("request", type=Path, help="JSON file with 'patient' and 'donors'")
    parser.add_argument("--format", default="json", choices=["json", "tabular", "csv"])
    parser.add_argument("--max-results", type=int, default=None)
    parser.add_argument("--include-low-scores", action="store_true")
    parser.add_argument("--blend", action="store_true", help="Apply the deterministic blend")
    parser.add_argument("--policies", type=Path, default=None, help="JSON policy file")
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    with open(args.request, "r", encoding="utf-8") as f:
        request = json.load(f)

    patient = Patient.model_validate(request["patient"])
    donors = [Donor.model_validate(d) for d in request.get("donors", [])]

    store = PolicyStore.from_json(args.policies) if args.policies else None
    engine = MatchOrchestrator(policy_store=store)

    option_fields = {"include_low_scores": args.include_low_scores, "use_blend": args.blend}
    if args.max_results is not None:
        option_fields["max_results"] = args.max_results

    try:
        batch = engine.match_patient_to_donors(patient, donors, MatchOptions(**option_fields))
    except PolicyNotFoundError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Summary: {batch.summary.model_dump()}")
    print(engine.export_results(batch.matches, args.format))
    return 0


if __name__ == "__main__":
    sys.exit(main())
