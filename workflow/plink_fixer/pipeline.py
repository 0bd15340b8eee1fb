from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import FixerConfig
from .errors import FatalInconsistencyError, FatalInputError
from .plink import Runner, extract_variants, plink_tool_from_config
from .progress import RunLog, RunState
from .records import MISSING_VARIANT_ID, ChangeLog, VariantRecord, check_readable, read_variants
from .reports import inspect_dataset, summarize_changes, write_table
from .samples import SampleFixResult, fix_sample_table
from .utils import LOG_DATEFMT, LOG_FORMAT, atomic_copy, count_lines, ensure_parent, get_logger, open_table
from .variants import VariantFixResult, fix_variant_table, retained_variant_ids


PLINK_SUFFIXES: Sequence[str] = (".bed", ".bim", ".fam")
SAMPLE_CHANGES_NAME = "FIXER_sample_changes.tsv"
SNP_CHANGES_NAME = "FIXER_snp_changes.tsv"
SUMMARY_NAME = "FIXER_change_summary.tsv"
PRE_VALIDATION_NAME = "FIXER_pre_validation.tsv"
POST_VALIDATION_NAME = "FIXER_post_validation.tsv"
ROW_TOKEN_PREFIX = "fixer_row_"


def plink_files(prefix: Path) -> Dict[str, Path]:
    return {suffix: prefix.with_name(prefix.name + suffix) for suffix in PLINK_SUFFIXES}


def default_report_dir(out_prefix: Path) -> Path:
    return out_prefix.parent / "fixer_results"


@dataclass
class FixerRunReport:
    samples_in: int
    samples_out: int
    snps_in: int
    snps_out: int
    genotypes_synchronized: bool
    report_dir: Path
    change_counts: Dict[str, int] = field(default_factory=dict)
    outputs: Dict[str, Path] = field(default_factory=dict)

    @property
    def snps_removed(self) -> int:
        return self.snps_in - self.snps_out

    def to_summary(self) -> Dict[str, object]:
        return {
            "samples_in": self.samples_in,
            "samples_out": self.samples_out,
            "snps_in": self.snps_in,
            "snps_out": self.snps_out,
            "snps_removed": self.snps_removed,
            "genotypes_synchronized": self.genotypes_synchronized,
            "change_counts": dict(self.change_counts),
            "outputs": {suffix: str(path) for suffix, path in self.outputs.items()},
        }


def _stage_link(src: Path, dst: Path) -> None:
    """Expose ``src`` under ``dst`` without copying when the filesystem allows it."""

    try:
        os.link(src, dst)
    except OSError:
        shutil.copyfile(src, dst)


def publish(pairs: Dict[Path, Path]) -> None:
    """Copy every ``src -> dst`` pair; destinations change only if all copies succeed."""

    staged: List[tuple[Path, Path]] = []
    try:
        for src, dst in pairs.items():
            ensure_parent(dst)
            partial = dst.with_name(dst.name + ".partial")
            shutil.copyfile(src, partial)
            staged.append((partial, dst))
        for partial, dst in staged:
            partial.replace(dst)
    finally:
        for partial, _ in staged:
            if partial.exists():
                partial.unlink()


class FixerPipeline:
    def __init__(
        self,
        config: FixerConfig,
        bfile: Path | str,
        out_prefix: Path | str,
        *,
        report_dir: Path | str | None = None,
        plink_executable: str | None = None,
        runner: Optional[Runner] = None,
    ) -> None:
        self.config = config
        self.bfile = Path(bfile)
        self.out_prefix = Path(out_prefix)
        self.report_dir = Path(report_dir) if report_dir else default_report_dir(self.out_prefix)
        self.plink_executable = plink_executable
        self.runner = runner or subprocess.run
        self.logger = get_logger()
        self.sample_settings = config.sample_settings()
        self.variant_settings = config.variant_settings()
        self.generate_reports = config.flag("output", "generate_reports", default=True)
        self.archive_originals = config.flag("output", "archive_originals", default=True)
        self.keep_intermediate = config.flag("processing", "keep_intermediate", default=False)

    @property
    def tables_dir(self) -> Path:
        return self.report_dir / "tables"

    @property
    def logs_dir(self) -> Path:
        return self.report_dir / "logs"

    @property
    def archive_dir(self) -> Path:
        return self.report_dir / "archive"

    def run(self) -> FixerRunReport:
        for directory in (self.tables_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

        start_time = datetime.now()
        session = f"fixer_run_{start_time.strftime('%Y%m%d_%H%M%S')}"
        log_handler = logging.FileHandler(self.logs_dir / f"{session}.log", encoding="utf-8", errors="backslashreplace")
        log_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        self.logger.addHandler(log_handler)

        run_log = RunLog(
            self.logs_dir / f"{session}.json",
            session=session,
            bfile=str(self.bfile),
            out_prefix=str(self.out_prefix),
            started_at=start_time,
        )
        workdir: Optional[Path] = None
        try:
            self.logger.info("PLINK Data Fixer started: %s -> %s", self.bfile, self.out_prefix)
            self._log_settings()

            run_log.enter(RunState.VALIDATE_INPUT)
            inputs = self.validate_inputs()

            run_log.enter(RunState.ARCHIVE, archive=self.archive_originals)
            if self.archive_originals:
                self._archive(inputs)
            if self.generate_reports:
                write_table(
                    inspect_dataset(self.bfile, self.sample_settings.allowed_chars),
                    self.tables_dir / PRE_VALIDATION_NAME,
                )

            ensure_parent(self.out_prefix)
            workdir = Path(tempfile.mkdtemp(prefix=f"{self.out_prefix.name}_temp_", dir=self.out_prefix.parent))
            self.logger.info("Created temporary directory: %s", workdir)
            working_fam = workdir / "working.fam"
            working_bim = workdir / "working.bim"
            shutil.copyfile(inputs[".fam"], working_fam)
            shutil.copyfile(inputs[".bim"], working_bim)

            run_log.enter(RunState.SAMPLE_FIX, enabled=self.sample_settings.enabled)
            sample_result = self._fix_samples(working_fam, workdir)
            fixed_fam = sample_result.output_path if sample_result else working_fam
            samples_in = sample_result.input_rows if sample_result else count_lines(working_fam)
            samples_out = sample_result.output_rows if sample_result else samples_in

            run_log.enter(RunState.SNP_FIX, enabled=self.variant_settings.enabled)
            variant_result = self._fix_variants(working_bim, workdir)
            fixed_bim = variant_result.output_path if variant_result else working_bim
            snps_in = variant_result.input_rows if variant_result else count_lines(working_bim)
            snps_out = variant_result.output_rows if variant_result else snps_in

            outputs = plink_files(self.out_prefix)
            change_logs = self._change_log_targets(sample_result, variant_result)
            synchronized = False
            if variant_result is not None and variant_result.removed > 0:
                run_log.enter(RunState.SYNC_GENOTYPES, removed=variant_result.removed)
                self.logger.info(
                    "SNPs changed: %d -> %d (removed: %d)", snps_in, snps_out, variant_result.removed
                )
                synced_bed = self.sync_genotypes(inputs, working_bim, fixed_bim, fixed_fam, variant_result, workdir)
                publish(
                    {synced_bed: outputs[".bed"], fixed_bim: outputs[".bim"], fixed_fam: outputs[".fam"], **change_logs}
                )
                synchronized = True
            else:
                run_log.enter(RunState.COPY_THROUGH)
                self.logger.info("No SNPs removed, copying files directly.")
                publish(
                    {inputs[".bed"]: outputs[".bed"], fixed_bim: outputs[".bim"], fixed_fam: outputs[".fam"], **change_logs}
                )

            report = FixerRunReport(
                samples_in=samples_in,
                samples_out=samples_out,
                snps_in=snps_in,
                snps_out=snps_out,
                genotypes_synchronized=synchronized,
                report_dir=self.report_dir,
                outputs=outputs,
            )
            self._write_summaries(
                report,
                {
                    "samples": sample_result.changes if sample_result else None,
                    "snps": variant_result.changes if variant_result else None,
                },
            )
            self.logger.info(
                "Final data at %s: %d samples, %d SNPs", self.out_prefix, report.samples_out, report.snps_out
            )
            self.logger.info("Reports available in: %s", self.tables_dir)
            run_log.finish(summary=report.to_summary())
            return report
        except Exception as exc:
            run_log.fail(str(exc))
            raise
        finally:
            if workdir is not None:
                if self.keep_intermediate:
                    self.logger.info("Keeping intermediate files in %s", workdir)
                else:
                    shutil.rmtree(workdir, ignore_errors=True)
            self.logger.removeHandler(log_handler)
            log_handler.close()

    def _log_settings(self) -> None:
        sample = self.sample_settings
        variant = self.variant_settings
        self.logger.info("Configuration values being used:")
        self.logger.info("  fix_duplicates (samples): %s", sample.fix_duplicates)
        self.logger.info("  fix_invalid_chars: %s (allowed: %s)", sample.fix_invalid_chars, sample.allowed_chars)
        self.logger.info("  fix_duplicate_rsid: %s", variant.fix_duplicate_rsid)
        self.logger.info("  fix_duplicate_chrpos: %s (keep_first: %s)", variant.fix_duplicate_chrpos, variant.keep_first_duplicate)

    def validate_inputs(self) -> Dict[str, Path]:
        self.logger.info("Validating input files...")
        files = plink_files(self.bfile)
        missing = [str(path) for path in files.values() if not path.is_file()]
        if missing:
            raise FatalInputError(f"Missing PLINK file(s) for prefix {self.bfile}: {', '.join(missing)}")
        for suffix, path in files.items():
            check_readable(path, suffix)
        self.logger.info(
            "Input data: %d samples, %d SNPs", count_lines(files[".fam"]), count_lines(files[".bim"])
        )
        return files

    def _archive(self, inputs: Dict[str, Path]) -> None:
        self.logger.info("Archiving original files...")
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        for path in inputs.values():
            atomic_copy(path, self.archive_dir / path.name)

    def _fix_samples(self, working_fam: Path, workdir: Path) -> Optional[SampleFixResult]:
        if not self.sample_settings.enabled:
            self.logger.info("Sample fixing disabled - skipping")
            return None
        result = fix_sample_table(
            working_fam,
            workdir / "sample_fixed.fam",
            self.sample_settings,
            report_path=workdir / SAMPLE_CHANGES_NAME,
        )
        if result.output_rows != result.input_rows:
            raise FatalInconsistencyError(
                f"Sample table row count changed ({result.input_rows} -> {result.output_rows}); "
                "the .fam file must stay aligned with the genotype matrix"
            )
        return result

    def _fix_variants(self, working_bim: Path, workdir: Path) -> Optional[VariantFixResult]:
        if not self.variant_settings.enabled:
            self.logger.info("SNP fixing disabled - skipping")
            return None
        return fix_variant_table(
            working_bim,
            workdir / "snp_fixed.bim",
            self.variant_settings,
            report_path=workdir / SNP_CHANGES_NAME,
        )

    def sync_genotypes(
        self,
        inputs: Dict[str, Path],
        working_bim: Path,
        fixed_bim: Path,
        fixed_fam: Path,
        result: VariantFixResult,
        workdir: Path,
    ) -> Path:
        """Subset the .bed to the retained variants and return the new .bed path."""

        tool = plink_tool_from_config(self.config, self.plink_executable)
        if tool is None:
            raise FatalInconsistencyError(
                f"PLINK not found, but {result.removed} SNPs were removed from {inputs['.bim']}. "
                f"Cannot synchronize {inputs['.bed']}. Aborting."
            )
        self.logger.info("Using PLINK at %s", tool.executable)

        plink_in = workdir / "plink_in"
        staged = plink_files(plink_in)
        _stage_link(inputs[".bed"], staged[".bed"])
        shutil.copyfile(fixed_fam, staged[".fam"])
        keep_list = workdir / "snps_to_keep.txt"

        if self.write_keep_list(fixed_bim, working_bim, keep_list):
            shutil.copyfile(working_bim, staged[".bim"])
        else:
            self.logger.warning(
                "Retained SNP IDs are not unique in %s; extracting by row position instead", inputs[".bim"]
            )
            self.write_row_token_inputs(working_bim, staged[".bim"], keep_list, result.removed_rows)

        self.logger.info("Filtering dataset to keep %d SNPs...", result.output_rows)
        synced = workdir / "synced"
        extract_variants(tool, plink_in, keep_list, synced, result.output_rows, runner=self.runner)

        synced_files = plink_files(synced)
        if not synced_files[".bed"].exists() or not synced_files[".bim"].exists():
            raise FatalInconsistencyError(f"PLINK did not produce {synced_files['.bed']}")
        synced_rows = count_lines(synced_files[".bim"])
        if synced_rows != result.output_rows:
            raise FatalInconsistencyError(
                f"PLINK kept {synced_rows} SNPs but the fixed .bim has {result.output_rows}; "
                "genotype matrix cannot be reconciled"
            )
        self.logger.info("PLINK filtering completed successfully")
        return synced_files[".bed"]

    @staticmethod
    def write_keep_list(fixed_bim: Path, working_bim: Path, keep_list: Path) -> bool:
        """Write the retained ID list; return False if it cannot select rows unambiguously.

        Extract-by-ID only reproduces the fixed table when every retained ID is
        a real ID that occurs exactly once in the table PLINK filters.
        """

        retained: set[str] = set()
        ambiguous = False
        with open_table(keep_list, "w") as handle:
            for variant_id in retained_variant_ids(fixed_bim):
                handle.write(variant_id + "\n")
                if variant_id == MISSING_VARIANT_ID or variant_id in retained:
                    ambiguous = True
                retained.add(variant_id)
        if ambiguous:
            return False

        seen: set[str] = set()
        for row in read_variants(working_bim):
            if not isinstance(row, VariantRecord) or row.variant_id not in retained:
                continue
            if row.variant_id in seen:
                return False
            seen.add(row.variant_id)
        return True

    @staticmethod
    def write_row_token_inputs(working_bim: Path, staged_bim: Path, keep_list: Path, removed_rows: List[int]) -> None:
        removed = set(removed_rows)
        with open_table(working_bim) as src, open_table(staged_bim, "w") as bim_out, open_table(
            keep_list, "w"
        ) as keep_out:
            index = 0
            for line in src:
                tokens = line.split()
                if not tokens:
                    continue
                token = f"{ROW_TOKEN_PREFIX}{index}"
                if len(tokens) > 1:
                    tokens[1] = token
                bim_out.write("\t".join(tokens) + "\n")
                if index not in removed:
                    keep_out.write(token + "\n")
                index += 1

    def _change_log_targets(
        self,
        sample_result: Optional[SampleFixResult],
        variant_result: Optional[VariantFixResult],
    ) -> Dict[Path, Path]:
        targets: Dict[Path, Path] = {}
        for result in (sample_result, variant_result):
            if result is not None and result.report_path is not None:
                targets[result.report_path] = self.tables_dir / result.report_path.name
        return targets

    def _write_summaries(self, report: FixerRunReport, logs: Dict[str, Optional[ChangeLog]]) -> None:
        summary = summarize_changes(logs)
        write_table(summary, self.tables_dir / SUMMARY_NAME)
        report.change_counts = {
            str(change_type): int(count)
            for change_type, count in summary.groupby("Change_Type", sort=False)["Count"].sum().items()
        }
        total = sum(report.change_counts.values())
        self.logger.info("Total changes logged: %d", total)

        if self.generate_reports:
            write_table(
                inspect_dataset(self.out_prefix, self.sample_settings.allowed_chars),
                self.tables_dir / POST_VALIDATION_NAME,
            )
