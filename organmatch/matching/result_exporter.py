"""Result Exporter - serialize match results for audit trails"""

import csv
import io
import json
from enum import Enum
from typing import Sequence, Union

from organmatch.data.schema import MatchResult
from organmatch.matching.errors import UnsupportedExportFormatError


class ExportFormat(str, Enum):
    JSON = "json"
    TABULAR = "tabular"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            if key == "csv":
                return cls.TABULAR
            for member in cls:
                if member.value == key:
                    return member
        return None


# Downstream audit tooling reads these by position; do not reorder
TABULAR_COLUMNS = (
    "donor_id",
    "score",
    "confidence",
    "blood",
    "hla",
    "urgency",
    "distance",
    "age",
    "weight",
    "verification",
    "warnings",
)

WARNING_SEPARATOR = "; "


def _tabular_row(result: MatchResult) -> list:
    b = result.breakdown
    return [
        result.donor.id,
        result.score,
        result.confidence,
        b.blood,
        b.hla,
        b.urgency,
        b.distance,
        b.age,
        b.weight,
        b.verification,
        WARNING_SEPARATOR.join(result.warnings),
    ]


def export_results(results: Sequence[MatchResult], fmt: Union[ExportFormat, str] = ExportFormat.JSON) -> str:
    """
    Serialize match results

    Args:
        results: Ranked match results
        fmt: "json" (full structure) or "tabular" (CSV with a fixed column order)

    Returns:
        Serialized text

    Raises:
        UnsupportedExportFormatError: unknown format
    """
    try:
        export_format = ExportFormat(fmt)
    except ValueError:
        raise UnsupportedExportFormatError(f"Unsupported export format: {fmt!r}") from None

    if export_format is ExportFormat.TABULAR:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(TABULAR_COLUMNS)
        for result in results:
            writer.writerow(_tabular_row(result))
        return buffer.getvalue()

    return json.dumps([result.model_dump(mode="json") for result in results], indent=2)
