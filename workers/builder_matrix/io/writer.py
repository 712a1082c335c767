"""
Writer — serialize the run summary to JSON.

Filesystem layout:
    <output_dir>/build_summary.json
"""
import json
from pathlib import Path

from builder_matrix.io.schema import RunSummary

SUMMARY_FILENAME = "build_summary.json"


def write_summary(summary: RunSummary, output_dir: Path) -> Path:
    """
    Write build_summary.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the path of the written file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / SUMMARY_FILENAME
    path.write_text(
        json.dumps(
            summary.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return path
