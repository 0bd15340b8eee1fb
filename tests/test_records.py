import io
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "workflow"))

from plink_fixer.errors import FatalInputError  # noqa: E402
from plink_fixer.records import (  # noqa: E402
    SAMPLE_CHANGE_COLUMNS,
    ChangeLog,
    ChangeLogEntry,
    ChangeType,
    MalformedLine,
    SampleRecord,
    VariantRecord,
    check_readable,
    format_sample,
    format_variant,
    parse_sample,
    parse_variant,
    read_variants,
)


def test_parse_sample_fields() -> None:
    row = parse_sample("FAM1\tIND1  0 0 2 1\n")

    assert isinstance(row, SampleRecord)
    assert (row.family_id, row.individual_id, row.sex, row.phenotype) == ("FAM1", "IND1", "2", "1")
    assert format_sample(row) == "FAM1 IND1 0 0 2 1"


def test_short_sample_line_is_malformed() -> None:
    row = parse_sample("FAM1 IND1 0 0 2\n", 7)

    assert isinstance(row, MalformedLine)
    assert row.line_no == 7
    assert row.text == "FAM1 IND1 0 0 2"
    assert format_sample(row) == "FAM1 IND1 0 0 2"


def test_parse_variant_fields() -> None:
    row = parse_variant("X rs9 0.25 15000 A T")

    assert isinstance(row, VariantRecord)
    assert row.locus == ("X", 15000)
    assert row.has_id
    assert not row.with_id(".").has_id
    assert format_variant(row) == "X\trs9\t0.25\t15000\tA\tT"


@pytest.mark.parametrize(
    "line",
    ["1 rs1 0 100 A", "1 rs1 0 1e3 A G", "1 rs1 cm 100 A G"],
)
def test_invalid_variant_lines_are_malformed(line: str) -> None:
    assert isinstance(parse_variant(line), MalformedLine)


def test_change_log_writes_header_and_rows() -> None:
    log = ChangeLog(SAMPLE_CHANGE_COLUMNS)
    log.append(ChangeLogEntry(ChangeType.DUPLICATE, ("F1", "S1"), ("F1", "S1_dup1"), "Resolved duplicate IID"))
    buffer = io.StringIO()

    log.write(buffer)

    lines = buffer.getvalue().splitlines()
    assert lines[0].split("\t") == list(SAMPLE_CHANGE_COLUMNS)
    assert lines[1] == "DUPLICATE\tF1\tS1\tF1\tS1_dup1\tResolved duplicate IID"
    assert log.count(ChangeType.DUPLICATE) == 1
    assert log.count(ChangeType.INVALID_CHARS) == 0


def test_read_variants_skips_blank_lines(tmp_path: Path) -> None:
    bim = tmp_path / "x.bim"
    bim.write_text("1 rs1 0 1 A G\n\n   \n1 rs2 0 2 A G\n")

    rows = list(read_variants(bim))

    assert [row.variant_id for row in rows] == ["rs1", "rs2"]


def test_check_readable_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FatalInputError, match="not found"):
        check_readable(tmp_path / "missing.bim", ".bim")
