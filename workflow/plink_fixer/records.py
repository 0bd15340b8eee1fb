"""Typed records for the PLINK sample (.fam) and variant (.bim) tables.

Parsing and formatting happen only at the file boundary; the normalizers work
on :class:`SampleRecord` and :class:`VariantRecord` values. Lines with fewer
than six fields are carried as :class:`MalformedLine` so they keep their row
position when passed through.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Tuple, Union

from .errors import FatalInputError
from .utils import open_table


MISSING_VARIANT_ID = "."
REMOVED_MARKER = "-"
FAM_FIELDS = 6
BIM_FIELDS = 6


class ChangeType(str, Enum):
    INVALID_CHARS = "INVALID_CHARS"
    DUPLICATE = "DUPLICATE"
    DUPLICATE_RSID = "DUPLICATE_RSID"
    DUPLICATE_CHRPOS_KEPT = "DUPLICATE_CHRPOS_KEPT"
    DUPLICATE_CHRPOS_REMOVED = "DUPLICATE_CHRPOS_REMOVED"


SAMPLE_CHANGE_COLUMNS: Tuple[str, ...] = (
    "Change_Type",
    "Original_FID",
    "Original_IID",
    "New_FID",
    "New_IID",
    "Description",
)

VARIANT_CHANGE_COLUMNS: Tuple[str, ...] = (
    "Change_Type",
    "Chromosome",
    "Position",
    "Original_rsID",
    "New_rsID",
    "Description",
)


@dataclass(frozen=True)
class SampleRecord:
    family_id: str
    individual_id: str
    paternal_id: str
    maternal_id: str
    sex: str
    phenotype: str
    extra: Tuple[str, ...] = ()

    def with_ids(self, family_id: str, individual_id: str) -> "SampleRecord":
        return SampleRecord(
            family_id,
            individual_id,
            self.paternal_id,
            self.maternal_id,
            self.sex,
            self.phenotype,
            self.extra,
        )


@dataclass(frozen=True)
class VariantRecord:
    chromosome: str
    variant_id: str
    genetic_distance: str
    position: int
    allele1: str
    allele2: str
    extra: Tuple[str, ...] = ()

    @property
    def locus(self) -> Tuple[str, int]:
        return (self.chromosome, self.position)

    @property
    def has_id(self) -> bool:
        return self.variant_id != MISSING_VARIANT_ID

    def with_id(self, variant_id: str) -> "VariantRecord":
        return VariantRecord(
            self.chromosome,
            variant_id,
            self.genetic_distance,
            self.position,
            self.allele1,
            self.allele2,
            self.extra,
        )


@dataclass(frozen=True)
class MalformedLine:
    line_no: int
    text: str
    reason: str


@dataclass(frozen=True)
class ChangeLogEntry:
    change_type: ChangeType
    original: Tuple[str, ...]
    new: Tuple[str, ...]
    description: str

    def to_row(self) -> Tuple[str, ...]:
        return (self.change_type.value, *self.original, *self.new, self.description)


SampleRow = Union[SampleRecord, MalformedLine]
VariantRow = Union[VariantRecord, MalformedLine]


@dataclass
class ChangeLog:
    """Append-only change log for one normalization run."""

    columns: Tuple[str, ...]
    entries: list[ChangeLogEntry] = field(default_factory=list)

    def append(self, entry: ChangeLogEntry) -> None:
        self.entries.append(entry)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ChangeLogEntry]:
        return iter(self.entries)

    def count(self, change_type: ChangeType) -> int:
        return sum(1 for entry in self.entries if entry.change_type is change_type)

    def write(self, handle) -> None:
        handle.write("\t".join(self.columns) + "\n")
        for entry in self.entries:
            handle.write("\t".join(entry.to_row()) + "\n")


def parse_sample(line: str, line_no: int = 0) -> SampleRow:
    tokens = line.split()
    if len(tokens) < FAM_FIELDS:
        return MalformedLine(line_no, line.rstrip("\r\n"), f"expected {FAM_FIELDS} fields, found {len(tokens)}")
    return SampleRecord(*tokens[:FAM_FIELDS], extra=tuple(tokens[FAM_FIELDS:]))


def format_sample(row: SampleRow) -> str:
    if isinstance(row, MalformedLine):
        return row.text
    fields = (
        row.family_id,
        row.individual_id,
        row.paternal_id,
        row.maternal_id,
        row.sex,
        row.phenotype,
        *row.extra,
    )
    return " ".join(fields)


def parse_variant(line: str, line_no: int = 0) -> VariantRow:
    tokens = line.split()
    if len(tokens) < BIM_FIELDS:
        return MalformedLine(line_no, line.rstrip("\r\n"), f"expected {BIM_FIELDS} fields, found {len(tokens)}")
    try:
        position = int(tokens[3])
    except ValueError:
        return MalformedLine(line_no, line.rstrip("\r\n"), f"non-integer position {tokens[3]!r}")
    try:
        float(tokens[2])
    except ValueError:
        return MalformedLine(line_no, line.rstrip("\r\n"), f"non-numeric genetic distance {tokens[2]!r}")
    return VariantRecord(
        chromosome=tokens[0],
        variant_id=tokens[1],
        genetic_distance=tokens[2],
        position=position,
        allele1=tokens[4],
        allele2=tokens[5],
        extra=tuple(tokens[BIM_FIELDS:]),
    )


def format_variant(row: VariantRow) -> str:
    if isinstance(row, MalformedLine):
        return row.text
    fields = (
        row.chromosome,
        row.variant_id,
        row.genetic_distance,
        str(row.position),
        row.allele1,
        row.allele2,
        *row.extra,
    )
    return "\t".join(fields)


def _iter_rows(path: Path, parser, *, strict: bool, label: str):
    try:
        handle = open_table(path)
    except OSError as exc:
        raise FatalInputError(f"Cannot read {label} file {path}: {exc.strerror or exc}") from exc
    with handle:
        for line_no, raw in enumerate(handle, 1):
            if not raw.strip():
                continue
            row = parser(raw, line_no)
            if strict and isinstance(row, MalformedLine):
                raise FatalInputError(f"{path}: line {line_no} is not a valid {label} record ({row.reason})")
            yield row


def read_samples(path: Path | str, *, strict: bool = False) -> Iterator[SampleRow]:
    """Yield .fam rows in file order, skipping blank lines."""

    return _iter_rows(Path(path), parse_sample, strict=strict, label=".fam")


def read_variants(path: Path | str, *, strict: bool = False) -> Iterator[VariantRow]:
    return _iter_rows(Path(path), parse_variant, strict=strict, label=".bim")


def check_readable(path: Path | str, label: str) -> Path:
    target = Path(path)
    if not target.is_file():
        raise FatalInputError(f"Input {label} file not found: {target}")
    try:
        with target.open("rb") as handle:
            handle.read(1)
    except OSError as exc:
        raise FatalInputError(f"Cannot read {label} file {target}: {exc.strerror or exc}") from exc
    return target
