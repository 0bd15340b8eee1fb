"""Sample ID normalization for PLINK .fam tables.

Row count and row order are never changed here: row ``i`` of the .fam file is
row ``i`` of the genotype matrix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List

from .config import SampleFixSettings
from .records import (
    SAMPLE_CHANGE_COLUMNS,
    ChangeLog,
    ChangeLogEntry,
    ChangeType,
    MalformedLine,
    SampleRow,
    check_readable,
    format_sample,
    read_samples,
)
from .utils import atomic_write, get_logger, step_logger


logger = get_logger()


@dataclass
class SampleFixResult:
    input_rows: int
    output_rows: int
    changes: ChangeLog
    malformed_lines: List[int] = field(default_factory=list)
    output_path: Path | None = None
    report_path: Path | None = None

    @property
    def invalid_fixed(self) -> int:
        return self.changes.count(ChangeType.INVALID_CHARS)

    @property
    def duplicates_fixed(self) -> int:
        return self.changes.count(ChangeType.DUPLICATE)


def sanitize_ids(rows: Iterable[SampleRow], settings: SampleFixSettings, changes: ChangeLog) -> Iterator[SampleRow]:
    pattern = settings.invalid_pattern
    for row in rows:
        if isinstance(row, MalformedLine):
            yield row
            continue
        new_fid = pattern.sub("_", row.family_id)
        new_iid = pattern.sub("_", row.individual_id)
        if new_fid != row.family_id or new_iid != row.individual_id:
            changes.append(
                ChangeLogEntry(
                    ChangeType.INVALID_CHARS,
                    (row.family_id, row.individual_id),
                    (new_fid, new_iid),
                    "Fixed invalid characters",
                )
            )
            row = row.with_ids(new_fid, new_iid)
        yield row


def resolve_duplicates(rows: Iterable[SampleRow], settings: SampleFixSettings, changes: ChangeLog) -> Iterator[SampleRow]:
    """Rename repeated individual IDs in first-seen order.

    The k-th occurrence of ``S1`` becomes ``S1<suffix><k-1>``. A generated name
    that is already taken moves on to the next free number, so every emitted
    IID is unique.
    """

    seen: Dict[str, int] = {}
    for row in rows:
        if isinstance(row, MalformedLine):
            yield row
            continue
        iid = row.individual_id
        occurrences = seen.get(iid, 0) + 1
        seen[iid] = occurrences
        if occurrences == 1:
            yield row
            continue

        counter = occurrences - 1
        candidate = f"{iid}{settings.duplicate_suffix}{counter}"
        while candidate in seen:
            counter += 1
            candidate = f"{iid}{settings.duplicate_suffix}{counter}"
        seen[iid] = counter + 1
        seen[candidate] = 1
        changes.append(
            ChangeLogEntry(
                ChangeType.DUPLICATE,
                (row.family_id, iid),
                (row.family_id, candidate),
                "Resolved duplicate IID",
            )
        )
        yield row.with_ids(row.family_id, candidate)


def normalize_samples(rows: Iterable[SampleRow], settings: SampleFixSettings) -> tuple[List[SampleRow], ChangeLog]:
    """In-memory variant of :func:`fix_sample_table`, handy for small tables and tests."""

    changes = ChangeLog(SAMPLE_CHANGE_COLUMNS)
    stream: Iterable[SampleRow] = rows
    if settings.fix_invalid_chars:
        stream = sanitize_ids(stream, settings, changes)
    if settings.fix_duplicates:
        stream = resolve_duplicates(stream, settings, changes)
    return list(stream), changes


def fix_sample_table(
    input_fam: Path | str,
    output_fam: Path | str,
    settings: SampleFixSettings,
    report_path: Path | str | None = None,
) -> SampleFixResult:
    input_path = check_readable(input_fam, ".fam")
    output_path = Path(output_fam)
    changes = ChangeLog(SAMPLE_CHANGE_COLUMNS)
    malformed: List[int] = []
    counts = {"input": 0, "output": 0}

    def _source() -> Iterator[SampleRow]:
        for row in read_samples(input_path, strict=settings.strict_records):
            counts["input"] += 1
            if isinstance(row, MalformedLine):
                malformed.append(row.line_no)
            yield row

    with step_logger("Fix sample IDs"):
        stream: Iterable[SampleRow] = _source()
        if settings.fix_invalid_chars:
            stream = sanitize_ids(stream, settings, changes)
        if settings.fix_duplicates:
            stream = resolve_duplicates(stream, settings, changes)

        with atomic_write(output_path) as handle:
            for row in stream:
                handle.write(format_sample(row) + "\n")
                counts["output"] += 1

        if malformed:
            logger.warning(
                "%d line(s) in %s have fewer than 6 fields and were passed through unchanged (first: line %d)",
                len(malformed),
                input_path,
                malformed[0],
            )

        result = SampleFixResult(
            input_rows=counts["input"],
            output_rows=counts["output"],
            changes=changes,
            malformed_lines=malformed,
            output_path=output_path,
        )
        if report_path is not None:
            result.report_path = Path(report_path)
            with atomic_write(result.report_path) as handle:
                changes.write(handle)

        if result.invalid_fixed:
            logger.info("Invalid characters fixed in %d sample(s)", result.invalid_fixed)
        elif settings.fix_invalid_chars:
            logger.info("No invalid characters found")
        if result.duplicates_fixed:
            logger.info("Duplicate IIDs resolved: %d", result.duplicates_fixed)
        elif settings.fix_duplicates:
            logger.info("No duplicate IIDs found")
        logger.info("Sample fixing wrote %d rows to %s (%d changes)", result.output_rows, output_path, len(changes))
    return result
