"""Resolve duplicate rsIDs and chr:pos keys in a single .bim file.

Only the .bim table is rewritten; when rows are removed the matching .bed
must be subset separately (the plink-fixer command does this with PLINK).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "workflow"))

from plink_fixer.config import FixerConfig, load_config  # noqa: E402
from plink_fixer.errors import FixerError  # noqa: E402
from plink_fixer.utils import get_logger  # noqa: E402
from plink_fixer.variants import fix_variant_table  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("input_bim")
    parser.add_argument("output_bim")
    parser.add_argument("--config")
    parser.add_argument("--report", help="Change log path (default: <output dir>/FIXER_snp_changes.tsv)")
    args = parser.parse_args(argv)
    logger = get_logger()

    output = Path(args.output_bim)
    report = Path(args.report) if args.report else output.parent / "FIXER_snp_changes.tsv"
    try:
        config = load_config(args.config) if args.config else FixerConfig.default()
        result = fix_variant_table(args.input_bim, output, config.variant_settings(), report_path=report)
    except FixerError as exc:
        logger.error(str(exc))
        return 1

    print(f"SNPs before fixing: {result.input_rows}")
    print(f"SNPs after fixing:  {result.output_rows}")
    if result.removed:
        print(f"WARNING: {result.removed} SNP(s) removed; the matching .bed is now out of sync")
    print(f"Change log saved to: {report}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
