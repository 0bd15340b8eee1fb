from .config import ConfigError, FixerConfig, load_config
from .errors import FatalInconsistencyError, FatalInputError, FixerError, ToolFailureError
from .pipeline import FixerPipeline, FixerRunReport
from .samples import fix_sample_table, normalize_samples
from .variants import fix_variant_table, normalize_variants

__all__ = [
    "ConfigError",
    "FixerConfig",
    "load_config",
    "FixerError",
    "FatalInputError",
    "FatalInconsistencyError",
    "ToolFailureError",
    "FixerPipeline",
    "FixerRunReport",
    "fix_sample_table",
    "normalize_samples",
    "fix_variant_table",
    "normalize_variants",
]
