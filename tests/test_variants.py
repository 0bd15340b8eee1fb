import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "workflow"))

from plink_fixer.config import VariantFixSettings  # noqa: E402
from plink_fixer.errors import FatalInputError  # noqa: E402
from plink_fixer.records import ChangeType, MalformedLine, parse_variant  # noqa: E402
from plink_fixer.variants import (  # noqa: E402
    find_duplicate_ids,
    find_duplicate_loci,
    fix_variant_table,
    normalize_variants,
    retained_variant_ids,
)


def _rows(*lines: str):
    return [parse_variant(line, index) for index, line in enumerate(lines, 1)]


def test_duplicate_rsid_keeps_first_and_blanks_later() -> None:
    rows = _rows("1 rs1 0 1000 A G", "1 rs1 0 2000 C T")

    fixed, changes = normalize_variants(rows, VariantFixSettings())

    assert [row.variant_id for row in fixed] == ["rs1", "."]
    assert len(fixed) == 2
    assert len(changes) == 1
    entry = changes.entries[0]
    assert entry.to_row() == ("DUPLICATE_RSID", "1", "2000", "rs1", ".", "Duplicate rsID replaced with '.'")


def test_missing_ids_are_never_duplicates() -> None:
    rows = _rows("1 . 0 1000 A G", "1 . 0 2000 C T")

    assert find_duplicate_ids(rows) == set()
    fixed, changes = normalize_variants(rows, VariantFixSettings())
    assert fixed == rows
    assert len(changes) == 0


def test_duplicate_locus_keeps_first() -> None:
    rows = _rows("chr1 rsA 0 1000 A G", "chr1 rsB 0 1000 A C", "chr1 rsC 0 1001 G T")

    fixed, changes = normalize_variants(rows, VariantFixSettings())

    assert [row.variant_id for row in fixed] == ["rsA", "rsC"]
    assert [entry.change_type for entry in changes] == [
        ChangeType.DUPLICATE_CHRPOS_KEPT,
        ChangeType.DUPLICATE_CHRPOS_REMOVED,
    ]
    assert changes.entries[1].new == ("-",)


def test_duplicate_locus_removes_all_when_not_keeping_first() -> None:
    rows = _rows(
        "2 rs1 0 500 A G",
        "2 rs2 0 500 A G",
        "2 rs3 0 500 A G",
        "2 rs4 0 600 A G",
    )
    settings = VariantFixSettings(keep_first_duplicate=False)

    fixed, changes = normalize_variants(rows, settings)

    assert [row.variant_id for row in fixed] == ["rs4"]
    assert changes.count(ChangeType.DUPLICATE_CHRPOS_REMOVED) == 3
    assert changes.count(ChangeType.DUPLICATE_CHRPOS_KEPT) == 0
    assert changes.entries[0].description == "All occurrences of duplicate chr:pos removed"


def test_locus_key_distinguishes_chromosome() -> None:
    rows = _rows("1 rs1 0 1000 A G", "2 rs2 0 1000 A G")

    assert find_duplicate_loci(rows) == set()


def test_combined_fixes_preserve_order() -> None:
    rows = _rows(
        "1 rs1 0 100 A G",
        "1 rs2 0 200 A G",
        "1 rs1 0 300 A G",
        "1 rs3 0 200 A G",
        "1 rs4 0 400 A G",
    )

    fixed, changes = normalize_variants(rows, VariantFixSettings())

    assert [(row.variant_id, row.position) for row in fixed] == [
        ("rs1", 100),
        ("rs2", 200),
        (".", 300),
        ("rs4", 400),
    ]
    ids = [row.variant_id for row in fixed if row.variant_id != "."]
    assert len(ids) == len(set(ids))
    loci = [row.locus for row in fixed]
    assert len(loci) == len(set(loci))
    assert len(changes) == 3


def test_disabled_settings_leave_table_alone() -> None:
    rows = _rows("1 rs1 0 100 A G", "1 rs1 0 100 A G")
    settings = VariantFixSettings(fix_duplicate_rsid=False, fix_duplicate_chrpos=False)

    fixed, changes = normalize_variants(rows, settings)

    assert fixed == rows
    assert len(changes) == 0


def test_fix_variant_table_streams_to_disk(tmp_path: Path) -> None:
    bim = tmp_path / "in.bim"
    bim.write_text(
        "1\trs1\t0\t1000\tA\tG\n"
        "1\trs2\t0\t1000\tA\tC\n"
        "1\trs1\t0\t2000\tG\tT\n"
        "1 rs5 0\n"
        "1\trs6\t0.5\t3000\tA\tT\n"
    )
    out = tmp_path / "fixed.bim"
    report = tmp_path / "snp_changes.tsv"

    result = fix_variant_table(bim, out, VariantFixSettings(), report_path=report)

    assert result.input_rows == 5
    assert result.output_rows == 4
    assert result.removed == 1
    assert result.removed_rows == [1]
    assert result.malformed_lines == [4]
    assert result.duplicate_ids == 1
    assert result.duplicate_loci == 1
    assert out.read_text().splitlines() == [
        "1\trs1\t0\t1000\tA\tG",
        "1\t.\t0\t2000\tG\tT",
        "1 rs5 0",
        "1\trs6\t0.5\t3000\tA\tT",
    ]
    header = report.read_text().splitlines()[0]
    assert header == "Change_Type\tChromosome\tPosition\tOriginal_rsID\tNew_rsID\tDescription"
    assert list(retained_variant_ids(out)) == ["rs1", ".", "rs5", "rs6"]


def test_removed_rows_index_the_input_table(tmp_path: Path) -> None:
    bim = tmp_path / "in.bim"
    bim.write_text("1 a 0 1 A G\n1 b 0 1 A G\n1 c 0 2 A G\n1 d 0 1 A G\n")

    result = fix_variant_table(bim, tmp_path / "out.bim", VariantFixSettings())

    assert result.removed_rows == [1, 3]
    assert result.output_rows == 2


def test_strict_mode_rejects_bad_position(tmp_path: Path) -> None:
    bim = tmp_path / "in.bim"
    bim.write_text("1 rs1 0 abc A G\n")

    with pytest.raises(FatalInputError, match="line 1"):
        fix_variant_table(bim, tmp_path / "out.bim", VariantFixSettings(strict_records=True))


def test_lenient_mode_passes_bad_position_through() -> None:
    rows = _rows("1 rs1 0 abc A G")

    assert isinstance(rows[0], MalformedLine)
    fixed, _ = normalize_variants(rows, VariantFixSettings())
    assert fixed == rows
