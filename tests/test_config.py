import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "workflow"))

from plink_fixer.config import (  # noqa: E402
    ConfigError,
    FixerConfig,
    SampleFixSettings,
    load_config,
    write_config_template,
)


def test_template_round_trips_to_defaults(tmp_path: Path) -> None:
    path = write_config_template(tmp_path / "fixer.yaml")

    config = load_config(path)

    assert config.root == tmp_path.resolve()
    assert config.sample_settings() == SampleFixSettings()
    variant = config.variant_settings()
    assert variant.fix_duplicate_rsid and variant.fix_duplicate_chrpos and variant.keep_first_duplicate
    assert config.get("tools", "plink_executable") is None
    assert config.positive_int("tools", "plink_timeout_seconds", default=None) == 3600


def test_string_booleans_are_accepted(tmp_path: Path) -> None:
    path = tmp_path / "fixer.yaml"
    path.write_text(
        "sample_fixing:\n"
        "  fix_duplicates: 'no'\n"
        "  duplicate_suffix: _rep\n"
        "snp_fixing:\n"
        "  keep_first_duplicate: 'false'\n"
        "processing:\n"
        "  strict_records: yes\n"
    )

    config = load_config(path)

    sample = config.sample_settings()
    assert sample.fix_duplicates is False
    assert sample.fix_invalid_chars is True
    assert sample.duplicate_suffix == "_rep"
    assert sample.strict_records is True
    assert config.variant_settings().keep_first_duplicate is False


def test_bad_boolean_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "fixer.yaml"
    path.write_text("snp_fixing:\n  fix_duplicate_rsid: sometimes\n")

    with pytest.raises(ConfigError, match="snp_fixing.fix_duplicate_rsid"):
        load_config(path).variant_settings()


def test_bad_character_class_is_rejected() -> None:
    config = FixerConfig(data={"sample_fixing": {"allowed_chars": "z-a"}}, root=Path("."))

    with pytest.raises(ConfigError, match="allowed_chars"):
        config.sample_settings()


def test_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(listing)

    broken = tmp_path / "broken.yaml"
    broken.write_text("sample_fixing: [unclosed\n")
    with pytest.raises(ConfigError, match="parse"):
        load_config(broken)


def test_positive_int_validation() -> None:
    config = FixerConfig(data={"tools": {"plink_threads": 0, "plink_memory_mb": "lots"}}, root=Path("."))

    with pytest.raises(ConfigError, match="positive"):
        config.positive_int("tools", "plink_threads", default=1)
    with pytest.raises(ConfigError, match="integer"):
        config.positive_int("tools", "plink_memory_mb", default=None)


def test_relative_paths_resolve_against_config_dir(tmp_path: Path) -> None:
    config = FixerConfig(data={"tools": {"plink_executable": "bin/plink"}}, root=tmp_path)

    assert config.path("tools", "plink_executable") == (tmp_path / "bin" / "plink").resolve()


@pytest.mark.parametrize(
    "sample_fixing, message",
    [
        ({"allowed_chars": "A-Za-z0-9"}, "'_'"),
        ({"duplicate_suffix": ".dup"}, "duplicate_suffix"),
        ({"allowed_chars": "A-Za-z_"}, "digits"),
    ],
)
def test_settings_that_break_a_second_pass_are_rejected(sample_fixing, message: str) -> None:
    config = FixerConfig(data={"sample_fixing": sample_fixing}, root=Path("."))

    with pytest.raises(ConfigError, match=message):
        config.sample_settings()


def test_suffix_checked_only_when_both_fixes_run() -> None:
    config = FixerConfig(
        data={"sample_fixing": {"duplicate_suffix": ".dup", "fix_invalid_chars": False}},
        root=Path("."),
    )

    assert config.sample_settings().duplicate_suffix == ".dup"
