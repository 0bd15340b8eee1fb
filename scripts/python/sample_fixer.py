"""Normalize the sample IDs of a single .fam file.

Usage: python sample_fixer.py <input.fam> <output.fam> [--config fixer.yaml] [--report changes.tsv]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "workflow"))

from plink_fixer.config import FixerConfig, load_config  # noqa: E402
from plink_fixer.errors import FixerError  # noqa: E402
from plink_fixer.samples import fix_sample_table  # noqa: E402
from plink_fixer.utils import get_logger  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("input_fam")
    parser.add_argument("output_fam")
    parser.add_argument("--config")
    parser.add_argument("--report", help="Change log path (default: <output dir>/FIXER_sample_changes.tsv)")
    args = parser.parse_args(argv)
    logger = get_logger()

    output = Path(args.output_fam)
    report = Path(args.report) if args.report else output.parent / "FIXER_sample_changes.tsv"
    try:
        config = load_config(args.config) if args.config else FixerConfig.default()
        result = fix_sample_table(args.input_fam, output, config.sample_settings(), report_path=report)
    except FixerError as exc:
        logger.error(str(exc))
        return 1

    print(f"Samples processed: {result.input_rows}")
    print(f"Invalid IDs fixed: {result.invalid_fixed}")
    print(f"Duplicate IIDs resolved: {result.duplicates_fixed}")
    print(f"Fixed table saved to: {output}")
    print(f"Change log saved to: {report}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
