"""
upcalc - IGE/UP/1 strength, tightness, let-by and purge test calculator.
"""

__version__ = "0.1.0"

from .errors import UpCalcError, ValidationError, RegimeViolation, SequenceViolation, LookupGap
from .tables import StandardTables, DEFAULT_TABLES, PurgeRow, tables_to_frames
from .presets import PRESETS, RegimeProfile, get_profile
from .profiles import load_standard_profile, tables_from_dict
from .models import (
    PipeSection,
    MeterConfig,
    InstallationVolume,
    JobDetails,
    JobParameters,
    TestSpec,
    PurgeConduit,
    PurgeSpec,
    ActualReading,
    Evaluation,
    TestOutcome,
    normalize_size_key,
)
from .volume import compute_installation_volume, pipe_section_volume, meter_volume, largest_pipe_diameter
from .duration import resolve_test_spec, leakage_rate, check_regime
from .purge import compute_purge, format_mmss
from .evaluate import evaluate
from .workflow import Sequencer, WorkflowState, run_job
from .certificate import build_certificate_data, write_certificate
from .io import JobFile, load_job, load_pipe_schedule

__all__ = [
    "__version__",
    "UpCalcError", "ValidationError", "RegimeViolation", "SequenceViolation", "LookupGap",
    "StandardTables", "DEFAULT_TABLES", "PurgeRow", "tables_to_frames",
    "PRESETS", "RegimeProfile", "get_profile",
    "load_standard_profile", "tables_from_dict",
    "PipeSection", "MeterConfig", "InstallationVolume", "JobDetails", "JobParameters",
    "TestSpec", "PurgeConduit", "PurgeSpec", "ActualReading", "Evaluation", "TestOutcome",
    "normalize_size_key",
    "compute_installation_volume", "pipe_section_volume", "meter_volume", "largest_pipe_diameter",
    "resolve_test_spec", "leakage_rate", "check_regime",
    "compute_purge", "format_mmss",
    "evaluate",
    "Sequencer", "WorkflowState", "run_job",
    "build_certificate_data", "write_certificate",
    "JobFile", "load_job", "load_pipe_schedule",
]
