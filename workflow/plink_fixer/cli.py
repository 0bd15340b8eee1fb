from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import FixerConfig, load_config, write_config_template
from .errors import FixerError
from .pipeline import PRE_VALIDATION_NAME, FixerPipeline, default_report_dir
from .reports import inspect_dataset, write_table
from .utils import get_logger


DEFAULT_TEMPLATE_PATH = "fixer_config_template.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fix sample and SNP identifiers in a PLINK binary dataset"
    )
    parser.add_argument("--bfile", help="Input PLINK prefix (expects .bed/.bim/.fam)")
    parser.add_argument("--out", help="Output PLINK prefix for the fixed dataset")
    parser.add_argument("--config", help="Path to the fixer YAML configuration file")
    parser.add_argument(
        "--outdir",
        help="Directory for tables, logs and archived originals (default: <out dir>/fixer_results)",
    )
    parser.add_argument("--plink", help="PLINK executable to use for genotype synchronization")
    parser.add_argument(
        "--inspect-only",
        action="store_true",
        help="Write the validation table for --bfile and exit without fixing anything",
    )
    parser.add_argument(
        "--conftemp",
        nargs="?",
        const=DEFAULT_TEMPLATE_PATH,
        help="Write a configuration template (default: %(const)s) and exit",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    return parser


def _inspect(config: FixerConfig, bfile: str, report_dir: Path) -> Path:
    logger = get_logger()
    allowed = config.sample_settings().allowed_chars
    table = inspect_dataset(bfile, allowed)
    target = write_table(table, report_dir / "tables" / PRE_VALIDATION_NAME)
    for row in table.itertuples(index=False):
        logger.info("%-20s %8d  %s", row.Check, row.Count, row.Severity)
    logger.info("Validation table written to %s", target)
    return target


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = get_logger()

    if args.conftemp:
        target = write_config_template(args.conftemp)
        logger.info("Configuration template written to %s", target)
        return 0

    if not args.bfile:
        parser.error("--bfile is required")
    if not args.out and not args.inspect_only:
        parser.error("--out is required unless --inspect-only is given")

    try:
        config = load_config(args.config) if args.config else FixerConfig.default()
        if args.verbose or config.flag("processing", "verbose_logging", default=False):
            logger.setLevel(logging.DEBUG)

        if args.inspect_only:
            if args.outdir:
                report_dir = Path(args.outdir)
            elif args.out:
                report_dir = default_report_dir(Path(args.out))
            else:
                report_dir = default_report_dir(Path(args.bfile))
            _inspect(config, args.bfile, report_dir)
            return 0

        pipeline = FixerPipeline(
            config,
            args.bfile,
            args.out,
            report_dir=args.outdir,
            plink_executable=args.plink,
        )
        report = pipeline.run()
    except FixerError as exc:
        logger.error(str(exc))
        return 1

    logger.info(
        "Done: %d samples, %d SNPs (%d removed)", report.samples_out, report.snps_out, report.snps_removed
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
