"""Record matcher — join source and target datasets on the MSID key.

Steps:
1. Locate the key column in each dataset (case-insensitive, first row).
2. Rename it to the canonical ``MSID`` and stringify key values.
3. Check key parity: every key must appear on both sides.
4. Join in target order via a key -> source row index, one record per key.
5. Log empty fields as advisory DataMismatchEntry values.

Pure deterministic: no LLM calls, no I/O. Input rows are never mutated.
"""

import logging
import math
from collections import Counter

from src.models.common import KEY_COLUMN, DatasetSide, ValidationErrorType
from src.models.dataset import (
    DataMismatchEntry,
    JoinedRecord,
    KeyIssue,
    MatchResult,
    Row,
    Scalar,
    ValidationError,
)
from src.models.errors import DuplicateKeyError, KeyParityError, MissingKeyColumnError

logger = logging.getLogger(__name__)


def _is_empty(value: Scalar) -> bool:
    if value is None or value == "":
        return True
    return isinstance(value, float) and math.isnan(value)


def _key_value(value: Scalar) -> str:
    return "" if value is None else str(value)


def find_key_column(rows: list[Row], key: str = KEY_COLUMN) -> str | None:
    """Return the first-row column matching ``key`` case-insensitively."""
    if not rows:
        return key
    wanted = key.lower()
    for column in rows[0]:
        if column.lower() == wanted:
            return column
    return None


def canonicalize_rows(rows: list[Row], column: str, key: str = KEY_COLUMN) -> list[Row]:
    """Return copies of ``rows`` with ``column`` renamed to ``key``.

    The canonical key is placed first and its value stringified so numeric
    spreadsheet ids join with text ids from CSV files.
    """
    canonical: list[Row] = []
    for row in rows:
        renamed: Row = {key: _key_value(row.get(column))}
        for name, value in row.items():
            if name != column:
                renamed[name] = value
        canonical.append(renamed)
    return canonical


class RecordMatcher:
    """Validate and join two datasets sharing a unique-key column."""

    def __init__(self, *, key: str = KEY_COLUMN, reject_duplicates: bool = False) -> None:
        self._key = key
        self._reject_duplicates = reject_duplicates

    def match(self, source_rows: list[Row], target_rows: list[Row]) -> MatchResult:
        """Join ``source_rows`` and ``target_rows`` on the key column.

        Raises:
            MissingKeyColumnError: a non-empty dataset lacks the key column.
            KeyParityError: some key exists on only one side.
            DuplicateKeyError: strict mode and a dataset repeats a key.
        """
        source = self._prepare(source_rows, DatasetSide.SOURCE)
        target = self._prepare(target_rows, DatasetSide.TARGET)

        self._check_duplicates(source, DatasetSide.SOURCE)
        self._check_duplicates(target, DatasetSide.TARGET)
        self._check_parity(source, target)

        source_index = self._index(source)
        target_index = self._index(target)

        joined: list[JoinedRecord] = []
        mismatches: list[DataMismatchEntry] = []
        for msid, target_row in target_index.items():
            source_row = source_index[msid]
            joined.append(JoinedRecord(source=source_row, target=target_row))
            mismatches.extend(self._empty_fields(msid, source_row, DatasetSide.SOURCE))
            mismatches.extend(self._empty_fields(msid, target_row, DatasetSide.TARGET))

        logger.info(
            "Data validation complete: %d records merged, %d empty fields logged",
            len(joined), len(mismatches),
        )
        return MatchResult(joined=joined, mismatches=mismatches)

    # ----- Steps -----

    def _index(self, rows: list[Row]) -> dict[str, Row]:
        """Key -> row. A repeated key keeps its last row at its first position."""
        index: dict[str, Row] = {}
        for row in rows:
            index[str(row[self._key])] = row
        return index

    def _prepare(self, rows: list[Row], side: DatasetSide) -> list[Row]:
        column = find_key_column(rows, self._key)
        if column is None:
            logger.error("%s column not found in %s", self._key, side.label)
            raise MissingKeyColumnError(
                ValidationError(
                    error_type=ValidationErrorType.MISSING_KEY_COLUMN,
                    message=f"{self._key} column not found in {side.label} file.",
                    side=side,
                )
            )
        return canonicalize_rows(rows, column, self._key)

    def _check_duplicates(self, rows: list[Row], side: DatasetSide) -> None:
        counts = Counter(str(row[self._key]) for row in rows)
        duplicates = [msid for msid, n in counts.items() if n > 1]
        if not duplicates:
            return
        if not self._reject_duplicates:
            logger.warning(
                "%s has %d duplicated %s value(s); the last row for each is kept: %s",
                side.label, len(duplicates), self._key, duplicates,
            )
            return
        raise DuplicateKeyError(
            ValidationError(
                error_type=ValidationErrorType.DUPLICATE_KEY,
                message=f"Duplicate {self._key} values found in {side.label} file.",
                side=side,
                details=[f"{self._key} {msid}: Duplicated in {side.label}" for msid in duplicates],
                key_issues=[KeyIssue(msid=msid, side=side) for msid in duplicates],
            )
        )

    def _check_parity(self, source: list[Row], target: list[Row]) -> None:
        source_keys = {str(row[self._key]) for row in source}
        target_keys = {str(row[self._key]) for row in target}

        issues: list[KeyIssue] = []
        seen: set[str] = set()
        # Ordered by first occurrence across source rows, then target rows.
        for row in [*source, *target]:
            msid = str(row[self._key])
            if msid in seen:
                continue
            seen.add(msid)
            if msid not in target_keys:
                issues.append(KeyIssue(msid=msid, side=DatasetSide.TARGET))
            elif msid not in source_keys:
                issues.append(KeyIssue(msid=msid, side=DatasetSide.SOURCE))

        if not issues:
            return

        logger.error("%s parity error: %d mismatches found", self._key, len(issues))
        raise KeyParityError(
            ValidationError(
                error_type=ValidationErrorType.KEY_PARITY_MISMATCH,
                message=(
                    f"{self._key} parity check failed. "
                    "Records exist in one file but not the other."
                ),
                details=[
                    f"{self._key} {issue.msid}: Missing in {issue.side.label}"
                    for issue in issues
                ],
                key_issues=issues,
            )
        )

    @staticmethod
    def _empty_fields(msid: str, row: Row, side: DatasetSide) -> list[DataMismatchEntry]:
        return [
            DataMismatchEntry(msid=msid, field=f"{side.value}.{name}")
            for name, value in row.items()
            if _is_empty(value)
        ]
