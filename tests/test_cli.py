import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "workflow"))

from plink_fixer.cli import main  # noqa: E402


def _write_dataset(prefix: Path) -> None:
    prefix.with_name(prefix.name + ".bed").write_bytes(b"\x6c\x1b\x01")
    prefix.with_name(prefix.name + ".bim").write_text("1\trs1\t0\t100\tA\tG\n1\trs2\t0\t200\tA\tG\n")
    prefix.with_name(prefix.name + ".fam").write_text("F1 S1 0 0 1 -9\nF1 S1 0 0 2 -9\n")


def test_conftemp_writes_template(tmp_path: Path) -> None:
    target = tmp_path / "fixer.yaml"

    assert main(["--conftemp", str(target)]) == 0
    assert "sample_fixing:" in target.read_text()


def test_inspect_only_writes_validation_table(tmp_path: Path) -> None:
    bfile = tmp_path / "study"
    _write_dataset(bfile)

    assert main(["--bfile", str(bfile), "--inspect-only", "--outdir", str(tmp_path / "reports")]) == 0
    table = (tmp_path / "reports" / "tables" / "FIXER_pre_validation.tsv").read_text()
    assert "Duplicate_IID\t1\tHIGH" in table


def test_full_run_returns_zero(tmp_path: Path) -> None:
    bfile = tmp_path / "study"
    _write_dataset(bfile)
    out = tmp_path / "out" / "study_fixed"

    assert main(["--bfile", str(bfile), "--out", str(out)]) == 0
    assert out.with_name("study_fixed.fam").read_text().splitlines()[1] == "F1 S1_dup1 0 0 2 -9"


def test_errors_return_one(tmp_path: Path) -> None:
    assert main(["--bfile", str(tmp_path / "absent"), "--out", str(tmp_path / "out")]) == 1
    assert main(["--bfile", str(tmp_path / "absent"), "--out", str(tmp_path / "out"), "--config", str(tmp_path / "none.yaml")]) == 1


def test_latin1_sample_id_is_repaired(tmp_path: Path) -> None:
    bfile = tmp_path / "study"
    _write_dataset(bfile)
    bfile.with_name("study.fam").write_bytes(b"F1 Jos\xe9 0 0 1 -9\nF1 S2 0 0 2 -9\n")
    out = tmp_path / "out" / "study_fixed"

    assert main(["--bfile", str(bfile), "--out", str(out)]) == 0
    assert out.with_name("study_fixed.fam").read_bytes().splitlines()[0] == b"F1 Jos_ 0 0 1 -9"
