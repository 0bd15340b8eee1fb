from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import psutil

from .config import DEFAULT_PLINK_TIMEOUT, FixerConfig
from .errors import FatalInconsistencyError, ToolFailureError
from .utils import get_logger


logger = get_logger()

DEFAULT_MEMORY_MB = 8000
MIN_MEMORY_MB = 2000


@dataclass(frozen=True)
class PlinkTool:
    executable: str
    timeout: int = DEFAULT_PLINK_TIMEOUT
    threads: int = 1
    memory_mb: Optional[int] = None

    @property
    def is_plink2(self) -> bool:
        return "plink2" in Path(self.executable).name.lower()


def resolve_plink(config: FixerConfig | None = None, override: str | None = None) -> Optional[str]:
    """Locate a PLINK binary; ``None`` when none is available."""

    candidate = override
    if not candidate and config is not None:
        configured = config.get("tools", "plink_executable")
        if configured:
            resolved = config.resolve_path(str(configured))
            candidate = str(resolved) if resolved and resolved.exists() else str(configured)
    if not candidate:
        candidate = os.environ.get("PLINK_PATH") or os.environ.get("PLINK_EXECUTABLE")
    if candidate:
        found = shutil.which(candidate)
        if found:
            return found
        logger.warning("Configured PLINK executable %s is not runnable", candidate)
        return None
    return shutil.which("plink") or shutil.which("plink2")


def plink_tool_from_config(config: FixerConfig, override: str | None = None) -> Optional[PlinkTool]:
    executable = resolve_plink(config, override)
    if executable is None:
        return None
    return PlinkTool(
        executable=executable,
        timeout=config.positive_int("tools", "plink_timeout_seconds", default=DEFAULT_PLINK_TIMEOUT),
        threads=config.positive_int("tools", "plink_threads", default=1),
        memory_mb=config.positive_int("tools", "plink_memory_mb", default=None),
    )


def recommended_memory_mb(num_snps: int) -> int:
    if num_snps > 15_000_000:
        return 16000
    if num_snps > 10_000_000:
        return 12000
    if num_snps > 5_000_000:
        return 8000
    return 4000


def memory_ceiling_mb(environ: Mapping[str, str] | None = None) -> int:
    env = os.environ if environ is None else environ
    if env.get("SLURM_MEM_PER_NODE"):
        return int(env["SLURM_MEM_PER_NODE"]) * 70 // 100
    if env.get("SLURM_MEM_PER_CPU") and env.get("SLURM_CPUS_PER_TASK"):
        allocated = int(env["SLURM_MEM_PER_CPU"]) * int(env["SLURM_CPUS_PER_TASK"])
        return allocated * 70 // 100
    try:
        available = psutil.virtual_memory().available // (1024 * 1024)
    except (OSError, RuntimeError):
        return DEFAULT_MEMORY_MB
    return int(available) * 60 // 100


def plink_memory_mb(num_snps: int, environ: Mapping[str, str] | None = None) -> int:
    ceiling = memory_ceiling_mb(environ)
    recommended = recommended_memory_mb(num_snps)
    if ceiling < recommended:
        memory = ceiling
        logger.info("Memory constraint: using %dMB (limited by available memory)", memory)
    else:
        memory = recommended
        logger.info("Memory setting: using %dMB for dataset with %d SNPs", memory, num_snps)
    if memory < MIN_MEMORY_MB:
        logger.warning("Very low memory detected, using minimum %dMB", MIN_MEMORY_MB)
        memory = MIN_MEMORY_MB
    return memory


def build_extract_command(
    tool: PlinkTool,
    bfile: Path,
    keep_list: Path,
    out_prefix: Path,
    memory_mb: int,
    *,
    silent: bool = False,
) -> List[str]:
    cmd = [
        tool.executable,
        "--bfile",
        str(bfile),
        "--extract",
        str(keep_list),
        "--make-bed",
        "--out",
        str(out_prefix),
        "--allow-extra-chr",
    ]
    if not tool.is_plink2:
        cmd.append("--allow-no-sex")
    cmd += ["--memory", str(memory_mb), "--threads", str(tool.threads)]
    if silent:
        cmd.append("--silent")
    return cmd


Runner = Callable[..., subprocess.CompletedProcess]


def _run_once(cmd: List[str], timeout: int, runner: Runner) -> None:
    logger.info("Running: %s", " ".join(cmd))
    try:
        runner(cmd, check=True, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise ToolFailureError(f"PLINK timed out after {timeout}s", timed_out=True) from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or exc.stdout or "").strip().splitlines()
        tail = detail[-1] if detail else "no output"
        raise ToolFailureError(
            f"PLINK exited with code {exc.returncode}: {tail}", returncode=exc.returncode
        ) from exc
    except FileNotFoundError as exc:
        raise ToolFailureError(f"PLINK executable not found: {cmd[0]}") from exc


def extract_variants(
    tool: PlinkTool,
    bfile: Path,
    keep_list: Path,
    out_prefix: Path,
    num_snps: int,
    *,
    runner: Runner = subprocess.run,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Subset the binary triple to the IDs in ``keep_list``, preserving row order.

    A timeout or failing exit is retried once with half the memory before the
    run is declared inconsistent.
    """

    memory = tool.memory_mb or plink_memory_mb(num_snps, environ)
    cmd = build_extract_command(tool, bfile, keep_list, out_prefix, memory)
    try:
        _run_once(cmd, tool.timeout, runner)
        return
    except ToolFailureError as exc:
        logger.error("PLINK filtering failed: %s", exc)

    fallback = max(memory // 2, MIN_MEMORY_MB)
    logger.info("Attempting fallback with minimal memory usage (%dMB)...", fallback)
    cmd = build_extract_command(tool, bfile, keep_list, out_prefix, fallback, silent=True)
    try:
        _run_once(cmd, tool.timeout, runner)
    except ToolFailureError as exc:
        raise FatalInconsistencyError(
            f"PLINK filtering failed even with minimal memory settings ({exc}); "
            f"{bfile}.bed cannot be synchronized with the fixed .bim"
        ) from exc
    logger.info("PLINK filtering completed with fallback settings.")
