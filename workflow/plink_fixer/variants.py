"""SNP ID and chr:pos conflict resolution for PLINK .bim tables.

Both fixes use the same two-scan layout: a first pass collects the keys that
occur more than once, a second pass streams the table and rewrites or drops
records against that set. Records themselves are never held in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Set, Tuple

from .config import VariantFixSettings
from .records import (
    MISSING_VARIANT_ID,
    REMOVED_MARKER,
    VARIANT_CHANGE_COLUMNS,
    ChangeLog,
    ChangeLogEntry,
    ChangeType,
    MalformedLine,
    VariantRecord,
    VariantRow,
    check_readable,
    format_variant,
    read_variants,
)
from .utils import atomic_write, get_logger, step_logger


logger = get_logger()

Locus = Tuple[str, int]

LARGE_TABLE_ROWS = 10_000_000
MEDIUM_TABLE_ROWS = 5_000_000


@dataclass
class VariantFixResult:
    input_rows: int
    output_rows: int
    changes: ChangeLog
    removed_rows: List[int] = field(default_factory=list)
    malformed_lines: List[int] = field(default_factory=list)
    duplicate_ids: int = 0
    duplicate_loci: int = 0
    output_path: Path | None = None
    report_path: Path | None = None

    @property
    def removed(self) -> int:
        return self.input_rows - self.output_rows


@dataclass
class DuplicateScan:
    rows: int = 0
    duplicate_ids: Set[str] = field(default_factory=set)
    duplicate_loci: Set[Locus] = field(default_factory=set)
    malformed_lines: List[int] = field(default_factory=list)


def scan_duplicate_keys(rows: Iterable[VariantRow], *, ids: bool = True, loci: bool = True) -> DuplicateScan:
    """First pass: collect variant IDs (``.`` excluded) and chr:pos keys seen more than once."""

    scan = DuplicateScan()
    seen_ids: Set[str] = set()
    seen_loci: Set[Locus] = set()
    for row in rows:
        scan.rows += 1
        if isinstance(row, MalformedLine):
            scan.malformed_lines.append(row.line_no)
            continue
        if ids and row.has_id:
            if row.variant_id in seen_ids:
                scan.duplicate_ids.add(row.variant_id)
            else:
                seen_ids.add(row.variant_id)
        if loci:
            if row.locus in seen_loci:
                scan.duplicate_loci.add(row.locus)
            else:
                seen_loci.add(row.locus)
    return scan


def find_duplicate_ids(rows: Iterable[VariantRow]) -> Set[str]:
    return scan_duplicate_keys(rows, loci=False).duplicate_ids


def find_duplicate_loci(rows: Iterable[VariantRow]) -> Set[Locus]:
    return scan_duplicate_keys(rows, ids=False).duplicate_loci


def suppress_duplicate_ids(
    rows: Iterable[VariantRow],
    duplicated: Set[str],
    changes: ChangeLog,
) -> Iterator[VariantRow]:
    """Keep the first occurrence of each duplicated ID and blank the rest to ``.``."""

    if not duplicated:
        yield from rows
        return

    first_seen: Set[str] = set()
    for row in rows:
        if isinstance(row, MalformedLine) or row.variant_id not in duplicated:
            yield row
            continue
        if row.variant_id not in first_seen:
            first_seen.add(row.variant_id)
            yield row
            continue
        changes.append(
            ChangeLogEntry(
                ChangeType.DUPLICATE_RSID,
                (row.chromosome, str(row.position), row.variant_id),
                (MISSING_VARIANT_ID,),
                "Duplicate rsID replaced with '.'",
            )
        )
        yield row.with_id(MISSING_VARIANT_ID)


def filter_duplicate_loci(
    rows: Iterable[VariantRow],
    duplicated: Set[Locus],
    changes: ChangeLog,
    *,
    keep_first: bool,
    removed_rows: List[int] | None = None,
) -> Iterator[VariantRow]:
    """Drop records whose chr:pos is duplicated.

    With ``keep_first`` the first record of each duplicated locus survives,
    otherwise every record of a duplicated locus is removed. Indices of
    dropped rows are appended to ``removed_rows`` when given.
    """

    kept: Set[Locus] = set()
    for index, row in enumerate(rows):
        if isinstance(row, MalformedLine) or row.locus not in duplicated:
            yield row
            continue

        original = (row.chromosome, str(row.position), row.variant_id)
        if keep_first and row.locus not in kept:
            kept.add(row.locus)
            changes.append(
                ChangeLogEntry(
                    ChangeType.DUPLICATE_CHRPOS_KEPT,
                    original,
                    (row.variant_id,),
                    "First occurrence of duplicate chr:pos kept",
                )
            )
            yield row
            continue

        description = (
            "Subsequent occurrence of duplicate chr:pos removed"
            if keep_first
            else "All occurrences of duplicate chr:pos removed"
        )
        changes.append(
            ChangeLogEntry(ChangeType.DUPLICATE_CHRPOS_REMOVED, original, (REMOVED_MARKER,), description)
        )
        if removed_rows is not None:
            removed_rows.append(index)


def normalize_variants(
    rows: Iterable[VariantRow],
    settings: VariantFixSettings,
) -> tuple[List[VariantRow], ChangeLog]:
    """In-memory variant of :func:`fix_variant_table`."""

    source = list(rows)
    changes = ChangeLog(VARIANT_CHANGE_COLUMNS)
    stream: Iterable[VariantRow] = source
    if settings.fix_duplicate_rsid:
        stream = suppress_duplicate_ids(stream, find_duplicate_ids(source), changes)
    if settings.fix_duplicate_chrpos:
        stream = filter_duplicate_loci(
            stream,
            find_duplicate_loci(source),
            changes,
            keep_first=settings.keep_first_duplicate,
        )
    return list(stream), changes


def _log_table_size(rows: int) -> None:
    logger.info("Input file contains %d SNPs", rows)
    if rows > LARGE_TABLE_ROWS:
        logger.warning("Large dataset detected (>%d SNPs); only duplicated keys are held in memory.", LARGE_TABLE_ROWS)
    elif rows > MEDIUM_TABLE_ROWS:
        logger.info("Medium-large dataset detected (>%d SNPs).", MEDIUM_TABLE_ROWS)


def fix_variant_table(
    input_bim: Path | str,
    output_bim: Path | str,
    settings: VariantFixSettings,
    report_path: Path | str | None = None,
) -> VariantFixResult:
    input_path = check_readable(input_bim, ".bim")
    output_path = Path(output_bim)
    changes = ChangeLog(VARIANT_CHANGE_COLUMNS)

    with step_logger("Fix SNP IDs and positions"):
        # Loci do not depend on the ID fix, so one scan of the source
        # table yields both duplicate sets.
        scan = scan_duplicate_keys(
            read_variants(input_path, strict=settings.strict_records),
            ids=settings.fix_duplicate_rsid,
            loci=settings.fix_duplicate_chrpos,
        )
        input_rows = scan.rows
        duplicate_ids = scan.duplicate_ids
        duplicate_loci = scan.duplicate_loci
        malformed = scan.malformed_lines

        _log_table_size(input_rows)
        if settings.fix_duplicate_rsid:
            logger.info("Found %d rsIDs with duplicates", len(duplicate_ids))
        if settings.fix_duplicate_chrpos:
            logger.info("Found %d chr:pos keys with duplicates", len(duplicate_loci))
        if malformed:
            logger.warning(
                "%d line(s) in %s are not valid .bim records and were passed through unchanged (first: line %d)",
                len(malformed),
                input_path,
                malformed[0],
            )

        # Pass two: rewrite and filter in file order.
        removed_rows: List[int] = []
        stream: Iterable[VariantRow] = read_variants(input_path, strict=settings.strict_records)
        if settings.fix_duplicate_rsid:
            stream = suppress_duplicate_ids(stream, duplicate_ids, changes)
        if settings.fix_duplicate_chrpos:
            stream = filter_duplicate_loci(
                stream,
                duplicate_loci,
                changes,
                keep_first=settings.keep_first_duplicate,
                removed_rows=removed_rows,
            )

        output_rows = 0
        with atomic_write(output_path) as handle:
            for row in stream:
                handle.write(format_variant(row) + "\n")
                output_rows += 1

        result = VariantFixResult(
            input_rows=input_rows,
            output_rows=output_rows,
            changes=changes,
            removed_rows=removed_rows,
            malformed_lines=malformed,
            duplicate_ids=len(duplicate_ids),
            duplicate_loci=len(duplicate_loci),
            output_path=output_path,
        )
        if report_path is not None:
            result.report_path = Path(report_path)
            with atomic_write(result.report_path) as handle:
                changes.write(handle)

        logger.info("Original SNPs: %d", input_rows)
        logger.info("SNPs after fixing: %d (Removed: %d)", output_rows, result.removed)
        logger.info("Total changes logged: %d", len(changes))
    return result


def retained_variant_ids(fixed_bim: Path | str) -> Iterator[str]:
    """Yield the variant ID column of a fixed .bim table in row order."""

    for row in read_variants(fixed_bim):
        if isinstance(row, VariantRecord):
            yield row.variant_id
        else:
            tokens = row.text.split()
            if len(tokens) > 1:
                yield tokens[1]
