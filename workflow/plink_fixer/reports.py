"""Validation and change-summary tables written next to the fixed dataset."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pandas as pd

from .config import DEFAULT_ALLOWED_CHARS
from .records import MISSING_VARIANT_ID, ChangeLog, MalformedLine, SampleRecord, VariantRecord, read_samples, read_variants
from .utils import atomic_write


VALIDATION_COLUMNS = ["Check", "Count", "Severity", "Description", "Examples"]
SUMMARY_COLUMNS = ["Change_Type", "Source", "Count"]


def _examples(values: pd.Index | pd.Series, limit: int) -> str:
    picked = [str(value) for value in list(values)[:limit]]
    if not picked:
        return ""
    suffix = "..." if len(values) > limit else ""
    return ",".join(picked) + suffix


def _repeated(series: pd.Series) -> pd.Series:
    counts = series.value_counts(sort=False)
    return counts[counts > 1]


def load_fam_frame(fam_path: Path) -> tuple[pd.DataFrame, List[int]]:
    malformed: List[int] = []
    ids: List[tuple[str, str]] = []
    for row in read_samples(fam_path):
        if isinstance(row, MalformedLine):
            malformed.append(row.line_no)
        elif isinstance(row, SampleRecord):
            ids.append((row.family_id, row.individual_id))
    return pd.DataFrame(ids, columns=["FID", "IID"], dtype=str), malformed


def load_bim_frame(bim_path: Path) -> tuple[pd.DataFrame, List[int]]:
    malformed: List[int] = []
    chroms: List[str] = []
    snp_ids: List[str] = []
    positions: List[int] = []
    for row in read_variants(bim_path):
        if isinstance(row, MalformedLine):
            malformed.append(row.line_no)
        elif isinstance(row, VariantRecord):
            chroms.append(row.chromosome)
            snp_ids.append(row.variant_id)
            positions.append(row.position)
    frame = pd.DataFrame(
        {
            "CHR": pd.Series(chroms, dtype=str),
            "SNP": pd.Series(snp_ids, dtype=str),
            "BP": pd.Series(positions, dtype="int64"),
        }
    )
    return frame, malformed


def inspect_dataset(
    prefix: Path | str,
    allowed_chars: str = DEFAULT_ALLOWED_CHARS,
    *,
    fam_path: Optional[Path] = None,
    bim_path: Optional[Path] = None,
) -> pd.DataFrame:
    """Summarize identifier problems in a .fam/.bim pair.

    Nothing here mutates the data. Duplicate family IDs are reported with LOW
    severity because several samples per family is normal.
    """

    base = Path(prefix)
    fam_path = fam_path or base.with_name(base.name + ".fam")
    bim_path = bim_path or base.with_name(base.name + ".bim")
    invalid = f"[^{allowed_chars}]"

    fam, fam_malformed = load_fam_frame(fam_path)
    bim, bim_malformed = load_bim_frame(bim_path)
    rows: List[Dict[str, object]] = []

    def add(check: str, count: int, severity: str, description: str, examples: str = "") -> None:
        rows.append(
            {
                "Check": check,
                "Count": int(count),
                "Severity": severity if count else "OK",
                "Description": description,
                "Examples": examples,
            }
        )

    dup_iid = _repeated(fam["IID"])
    add("Duplicate_IID", len(dup_iid), "HIGH", "Duplicate Individual IDs - will cause PLINK errors", _examples(dup_iid.index, 5))

    dup_fid = _repeated(fam["FID"])
    add("Duplicate_FID", len(dup_fid), "LOW", "Multiple samples per Family ID (normal for families)", _examples(dup_fid.index, 3))

    bad_iid = fam.loc[fam["IID"].str.contains(invalid, regex=True), "IID"]
    add("Invalid_IID_Format", len(bad_iid), "HIGH", "Individual IDs contain special characters", _examples(bad_iid, 3))

    bad_fid = fam.loc[fam["FID"].str.contains(invalid, regex=True), "FID"]
    add("Invalid_FID_Format", len(bad_fid), "MEDIUM", "Family IDs contain special characters", _examples(bad_fid, 3))

    named = bim.loc[bim["SNP"] != MISSING_VARIANT_ID, "SNP"]
    dup_snp = _repeated(named)
    add("Duplicate_SNP_IDs", len(dup_snp), "HIGH", "Duplicate SNP IDs - will cause analysis errors", _examples(dup_snp.index, 3))

    locus_sizes = bim.groupby(["CHR", "BP"], sort=False).size()
    dup_loci = locus_sizes[locus_sizes > 1]
    locus_labels = [f"{chrom}:{bp}" for chrom, bp in dup_loci.index]
    add("Duplicate_ChrPos", len(dup_loci), "HIGH", "Multiple SNPs share a chromosome and position", _examples(pd.Index(locus_labels), 3))

    add("Malformed_FAM_Lines", len(fam_malformed), "HIGH", "Lines in .fam with fewer than 6 fields", _examples(pd.Index(fam_malformed), 3))
    add("Malformed_BIM_Lines", len(bim_malformed), "HIGH", "Lines in .bim that are not valid records", _examples(pd.Index(bim_malformed), 3))

    return pd.DataFrame(rows, columns=VALIDATION_COLUMNS)


def summarize_changes(logs: Mapping[str, Optional[ChangeLog]]) -> pd.DataFrame:
    """Merge per-stage change logs into one table keyed by change type.

    Counts come from the in-memory logs, so IDs containing quotes or tabs
    cannot skew them.
    """

    rows: List[Dict[str, object]] = []
    for source, changes in logs.items():
        if changes is None:
            continue
        types = pd.Series([entry.change_type.value for entry in changes], dtype=object)
        for change_type, count in types.groupby(types, sort=False).size().items():
            rows.append({"Change_Type": change_type, "Source": source, "Count": int(count)})
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def write_table(frame: pd.DataFrame, path: Path) -> Path:
    with atomic_write(path) as handle:
        frame.to_csv(handle, sep="\t", index=False)
    return path
