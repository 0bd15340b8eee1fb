from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import FixerError
from .utils import write_text


class ConfigError(FixerError):
    """Raised when the fixer configuration is invalid."""


DEFAULT_ALLOWED_CHARS = "A-Za-z0-9_-"
DEFAULT_DUPLICATE_SUFFIX = "_dup"
DEFAULT_PLINK_TIMEOUT = 3600

_TRUE_WORDS = {"true", "yes", "y", "on", "1"}
_FALSE_WORDS = {"false", "no", "n", "off", "0"}


CONFIG_TEMPLATE = """\
# PLINK Data Fixer configuration
# =============================================================================
# When SNPs are removed because of duplicate chr:pos, PLINK is used to keep
# the .bed, .bim and .fam files synchronized. PLINK must be on PATH, set via
# PLINK_PATH, or configured under tools.plink_executable.
# =============================================================================

# Sample ID fixing
sample_fixing:
  fix_duplicates: true           # Rename duplicated individual IDs
  fix_invalid_chars: true        # Replace invalid characters in FID/IID with '_'
  allowed_chars: "A-Za-z0-9_-"   # Regex character class of allowed characters
  duplicate_suffix: "_dup"       # Suffix for duplicate resolution (S1 -> S1_dup1)

# SNP fixing
snp_fixing:
  fix_duplicate_rsid: true       # Replace later occurrences of duplicate rsIDs with '.'
  fix_duplicate_chrpos: true     # Remove SNPs with duplicate chr:pos
  keep_first_duplicate: true     # Keep first occurrence of duplicate chr:pos (false removes all)

# Output
output:
  generate_reports: true         # Write pre/post validation tables
  archive_originals: true        # Copy the input triple into archive/

# Processing
processing:
  strict_records: false          # Reject lines with fewer than 6 fields instead of passing them through
  keep_intermediate: false       # Keep the temporary working directory
  verbose_logging: false         # DEBUG level logging

# External tools
tools:
  plink_executable: null         # Explicit PLINK binary (default: PLINK_PATH, then plink/plink2 on PATH)
  plink_timeout_seconds: 3600    # Timeout for the synchronization call
  plink_memory_mb: null          # Fixed --memory value (default: derived from SLURM or free memory)
  plink_threads: 1
"""


def as_bool(value: Any, *, key: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ConfigError(f"Config key {key} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class SampleFixSettings:
    fix_invalid_chars: bool = True
    fix_duplicates: bool = True
    allowed_chars: str = DEFAULT_ALLOWED_CHARS
    duplicate_suffix: str = DEFAULT_DUPLICATE_SUFFIX
    strict_records: bool = False
    invalid_pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            pattern = re.compile(f"[^{self.allowed_chars}]")
        except re.error as exc:
            raise ConfigError(
                f"sample_fixing.allowed_chars is not a valid character class: {self.allowed_chars!r} ({exc})"
            ) from exc
        object.__setattr__(self, "invalid_pattern", pattern)

        # Replacements and generated names must survive a second sanitizing pass.
        if self.fix_invalid_chars and pattern.search("_"):
            raise ConfigError(
                f"sample_fixing.allowed_chars must include '_', the replacement character: {self.allowed_chars!r}"
            )
        if self.fix_invalid_chars and self.fix_duplicates and pattern.search(self.duplicate_suffix + "0123456789"):
            raise ConfigError(
                f"sample_fixing.duplicate_suffix {self.duplicate_suffix!r} and the digits 0-9 "
                f"must only use allowed characters ({self.allowed_chars!r})"
            )

    @property
    def enabled(self) -> bool:
        return self.fix_invalid_chars or self.fix_duplicates


@dataclass(frozen=True)
class VariantFixSettings:
    fix_duplicate_rsid: bool = True
    fix_duplicate_chrpos: bool = True
    keep_first_duplicate: bool = True
    strict_records: bool = False

    @property
    def enabled(self) -> bool:
        return self.fix_duplicate_rsid or self.fix_duplicate_chrpos


@dataclass(frozen=True)
class FixerConfig:
    data: Dict[str, Any]
    root: Path
    config_path: Optional[Path] = None

    @classmethod
    def load(cls, path: Path | str) -> "FixerConfig":
        config_path = Path(path).expanduser().resolve()
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse YAML config {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML structure must be a mapping")

        return cls(data=data, root=config_path.parent, config_path=config_path)

    @classmethod
    def default(cls, root: Path | str | None = None) -> "FixerConfig":
        return cls(data={}, root=Path(root or Path.cwd()).resolve())

    def get(self, *keys: str, default: Any = None) -> Any:
        node: Any = self.data
        for key in keys:
            if isinstance(node, dict) and key in node:
                node = node[key]
            else:
                return default
        return default if node is None else node

    def flag(self, *keys: str, default: bool) -> bool:
        return as_bool(self.get(*keys), key=".".join(keys), default=default)

    def resolve_path(self, value: Optional[str], create_parent: bool = False) -> Optional[Path]:
        if value in (None, ""):
            return None
        path = Path(str(value)).expanduser()
        if not path.is_absolute():
            path = (self.root / path).resolve()
        if create_parent:
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def path(self, *keys: str, create_parent: bool = False, default: Optional[str] = None) -> Optional[Path]:
        raw = self.get(*keys, default=default)
        return self.resolve_path(raw, create_parent=create_parent)

    def positive_int(self, *keys: str, default: Optional[int]) -> Optional[int]:
        raw = self.get(*keys)
        if raw is None:
            return default
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Config key {'.'.join(keys)} must be an integer, got {raw!r}") from exc
        if value <= 0:
            raise ConfigError(f"Config key {'.'.join(keys)} must be positive, got {value}")
        return value

    def sample_settings(self) -> SampleFixSettings:
        return SampleFixSettings(
            fix_invalid_chars=self.flag("sample_fixing", "fix_invalid_chars", default=True),
            fix_duplicates=self.flag("sample_fixing", "fix_duplicates", default=True),
            allowed_chars=str(self.get("sample_fixing", "allowed_chars", default=DEFAULT_ALLOWED_CHARS)),
            duplicate_suffix=str(self.get("sample_fixing", "duplicate_suffix", default=DEFAULT_DUPLICATE_SUFFIX)),
            strict_records=self.flag("processing", "strict_records", default=False),
        )

    def variant_settings(self) -> VariantFixSettings:
        return VariantFixSettings(
            fix_duplicate_rsid=self.flag("snp_fixing", "fix_duplicate_rsid", default=True),
            fix_duplicate_chrpos=self.flag("snp_fixing", "fix_duplicate_chrpos", default=True),
            keep_first_duplicate=self.flag("snp_fixing", "keep_first_duplicate", default=True),
            strict_records=self.flag("processing", "strict_records", default=False),
        )


def write_config_template(path: Path | str) -> Path:
    target = Path(path)
    write_text(target, CONFIG_TEMPLATE)
    return target


load_config = FixerConfig.load
