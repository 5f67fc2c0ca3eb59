"""JSON snapshot I/O for the casemerge CLI.

The engine itself never touches storage; the CLI stands in for the storage
collaborator by reading and writing plain JSON files:

  batch / pool files — a JSON array of raw record objects (any alias shape
                       the normalizer understands)
  result files       — a serialized BatchResult, rewritten after each review
                       session so review can continue later

Raw records that fail validate_raw() are returned separately so the command
can report them; they never reach the engine.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from casemerge.errors import InvalidRecord, ItemError
from casemerge.records.models import BatchResult, Record
from casemerge.records.normalizer import normalize, validate_raw

logger = logging.getLogger(__name__)


def load_records(path: Path) -> tuple[list[Record], list[ItemError]]:
    """Read a JSON array of raw records.

    Args:
        path: File holding a JSON array of objects.

    Returns:
        (normalized records, rejected items). Rejected items carry the array
        position as their ref when the record has no id.

    Raises:
        ValueError: If the file is not a JSON array of objects.
        OSError:    If the file cannot be read.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: not valid JSON ({exc})") from exc
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise ValueError(f"{path}: expected a JSON array of objects")

    records: list[Record] = []
    rejected: list[ItemError] = []
    for position, raw in enumerate(payload):
        try:
            validate_raw(raw)
        except InvalidRecord as exc:
            ref = str(raw.get("id") or f"{path.name}[{position}]")
            rejected.append(ItemError.from_exception(ref, exc))
            continue
        records.append(normalize(raw))

    logger.debug("Loaded %d record(s) from %s (%d rejected)", len(records), path, len(rejected))
    return records, rejected


def save_records(path: Path, records: list[Record]) -> None:
    payload = [r.model_dump(mode="json") for r in records]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def load_result(path: Path) -> BatchResult:
    """Read a BatchResult written by save_result().

    Raises:
        ValueError: If the file does not hold a valid BatchResult.
    """
    return BatchResult.model_validate_json(path.read_text(encoding="utf-8"))


def save_result(path: Path, result: BatchResult) -> None:
    path.write_text(result.model_dump_json(indent=2) + "\n", encoding="utf-8")
