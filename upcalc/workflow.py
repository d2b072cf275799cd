"""Per-job test sequencer: Strength -> Tightness (+ Let-by) -> Purge.

The :class:`Sequencer` owns the configuration in force (pipes, meter, job
parameters, purge options) and a :class:`WorkflowState`. Every mutation
re-derives the installation volume from scratch and re-fires the regime
gate; specs are always re-derived from the configuration in force, never
patched.

Stages::

    job_setup -> installation_type_chosen -> test_selected
        -> [let_by_pending -> let_by_done]     (existing + tightness only)
        -> configuring -> awaiting_reading -> evaluated
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
import logging

from .duration import check_regime, resolve_test_spec
from .errors import RegimeViolation, SequenceViolation, UpCalcError, ValidationError
from .evaluate import evaluate
from .models import (
    ActualReading,
    InstallationVolume,
    JobDetails,
    JobParameters,
    MeterConfig,
    PipeSection,
    PurgeConduit,
    TestOutcome,
    normalize_choice,
    normalize_purge_direction,
)
from .presets import RegimeProfile, get_profile
from .purge import compute_purge
from .tables import StandardTables
from .volume import compute_installation_volume, largest_pipe_diameter

if TYPE_CHECKING:
    from .io import JobFile

logger = logging.getLogger(__name__)

STAGES = (
    "job_setup",
    "installation_type_chosen",
    "test_selected",
    "let_by_pending",
    "let_by_done",
    "configuring",
    "awaiting_reading",
    "evaluated",
)
SEQUENCE = ("strength", "tightness", "purge")
NEXT_TEST = {"strength": "tightness", "tightness": "purge"}
_IN_PROGRESS = ("test_selected", "let_by_pending", "let_by_done", "configuring", "awaiting_reading")


@dataclass
class WorkflowState:
    stage: str = "job_setup"
    installation_type: Optional[str] = None
    active_test: Optional[str] = None
    outcomes: List[TestOutcome] = field(default_factory=list)
    pending: Dict[str, Any] = field(default_factory=dict)
    installation_volume: Optional[InstallationVolume] = None
    directive: Optional[str] = None
    let_by_passed: bool = False


def _as_pipe(p: PipeSection | Dict[str, Any]) -> PipeSection:
    return p if isinstance(p, PipeSection) else PipeSection.from_dict(p)


def _as_conduit(c: PurgeConduit | Dict[str, Any] | None, kind: str) -> Optional[PurgeConduit]:
    if c is None or isinstance(c, PurgeConduit):
        return c
    return PurgeConduit(kind=c.get("kind", kind), diameter_mm=c.get("diameter_mm"), length_m=c.get("length_m", 0.0))


class Sequencer:
    """Drive one job through the test sequence."""

    def __init__(self,
                 job: JobDetails | None = None,
                 regime: str | RegimeProfile = "commercial",
                 *,
                 tables: StandardTables | None = None,
                 strict: bool = True):
        self.job = job or JobDetails()
        profile = get_profile(regime)
        self.profile: RegimeProfile = replace(profile, tables=tables) if tables is not None else profile
        self.strict = strict
        self.pipes: List[PipeSection] = []
        self.meter = MeterConfig()
        self.params: Optional[JobParameters] = None
        self.purge_options: Dict[str, Any] = {"purge_direction": "air_to_gas", "hose": None, "stack": None}
        self.state = WorkflowState()

    # --- derived views -------------------------------------------------
    @property
    def regime(self) -> str:
        return self.profile.name

    @property
    def directive(self) -> Optional[str]:
        return self.state.directive

    @property
    def is_blocked(self) -> bool:
        return self.state.directive is not None

    @property
    def fittings_allowance(self) -> bool:
        if self.params is not None and self.params.fittings_allowance is not None:
            return bool(self.params.fittings_allowance)
        return self.profile.fittings_allowance

    def effective_params(self) -> JobParameters:
        if self.params is None:
            raise ValidationError("Job parameters have not been configured")
        return replace(
            self.params,
            regime=self.profile.name,
            installation_type=self.state.installation_type or self.params.installation_type,
        )

    def installation_volume(self) -> InstallationVolume:
        return compute_installation_volume(
            self.pipes,
            self.meter,
            self.fittings_allowance,
            profile=self.profile,
            strict=self.strict,
        )

    def latest_outcomes(self) -> Dict[str, TestOutcome]:
        latest: Dict[str, TestOutcome] = {}
        for o in self.state.outcomes:
            latest[o.test_type] = o
        return latest

    def _last_main_outcome(self) -> Optional[TestOutcome]:
        for o in reversed(self.state.outcomes):
            if o.test_type in SEQUENCE:
                return o
        return None

    def available_tests(self) -> List[str]:
        """Tests that :meth:`select_test` currently accepts."""
        if self.state.stage == "job_setup":
            return []
        last = self._last_main_outcome()
        if last is None:
            return list(SEQUENCE)
        allowed = [last.test_type]
        if last.passed and last.test_type in NEXT_TEST:
            allowed.append(NEXT_TEST[last.test_type])
        return allowed

    def next_test(self) -> Optional[str]:
        """Test unlocked by the latest PASS, or ``None``."""
        if self.state.stage != "evaluated":
            return None
        last = self._last_main_outcome()
        if last is None or not last.passed:
            return None
        return NEXT_TEST.get(last.test_type)

    def requires_let_by(self, test_type: Optional[str] = None) -> bool:
        test_type = test_type or self.state.active_test
        return test_type == "tightness" and self.state.installation_type == "existing"

    # --- recompute -----------------------------------------------------
    def _derive(self, test_type: str):
        iv = self.state.installation_volume or self.installation_volume()
        if test_type == "purge":
            opts = self.purge_options
            hose, stack = opts.get("hose"), opts.get("stack")
            largest = largest_pipe_diameter(self.pipes, (hose, stack))
            return compute_purge(
                iv.total,
                hose,
                stack,
                largest,
                purge_direction=opts.get("purge_direction", "air_to_gas"),
                tables=self.profile.tables,
                velocity_m_s=self.profile.purge_velocity_m_s,
            )
        return resolve_test_spec(iv.total, self.effective_params(), test_type, profile=self.profile)

    def _refresh(self) -> None:
        iv = self.installation_volume()
        self.state.installation_volume = iv
        try:
            check_regime(iv.total, self.profile)
        except RegimeViolation as exc:
            if self.state.directive is None:
                logger.warning("Regime gate: %s", exc.directive)
            self.state.directive = exc.directive
            self.state.pending.clear()
            return
        if self.state.directive is not None:
            logger.info("Regime gate cleared (IV %.4f m³)", iv.total)
        self.state.directive = None
        wanted = set(self.state.pending)
        if self.state.active_test and self.state.stage in ("configuring", "awaiting_reading"):
            wanted.add(self.state.active_test)
        for t in sorted(wanted):
            try:
                self.state.pending[t] = self._derive(t)
            except UpCalcError as exc:
                logger.warning("Dropped pending %s spec: %s", t, exc)
                self.state.pending.pop(t, None)

    def _gate(self) -> None:
        if self.state.directive is not None:
            iv = self.state.installation_volume
            raise RegimeViolation(iv.total if iv else float("nan"), self.profile.volume_ceiling_m3 or 0.0,
                                  self.profile.name)

    # --- configuration -------------------------------------------------
    def update_configuration(self,
                             pipes: Iterable[PipeSection | Dict[str, Any]] | None = None,
                             meter: MeterConfig | Dict[str, Any] | None = None,
                             params: JobParameters | Dict[str, Any] | None = None) -> InstallationVolume:
        """Replace any of pipes/meter/params and recompute.

        Allowed at any stage. Pending specs are re-derived in place; recorded
        outcomes are never touched.
        """
        previous = (self.pipes, self.meter, self.params)
        if pipes is not None:
            pipes = [_as_pipe(p) for p in pipes]
        if meter is not None and not isinstance(meter, MeterConfig):
            meter = MeterConfig.from_dict(meter)
        if params is not None:
            if not isinstance(params, JobParameters):
                try:
                    params = JobParameters(**params)
                except TypeError as exc:
                    raise ValidationError(f"Invalid job parameters: {exc}") from None
            # the sequencer regime wins; use switch_regime() to change it
            params = replace(params, regime=self.profile.name)
        self.pipes = previous[0] if pipes is None else pipes
        self.meter = previous[1] if meter is None else meter
        self.params = previous[2] if params is None else params
        try:
            self._refresh()
        except UpCalcError:
            self.pipes, self.meter, self.params = previous
            raise
        return self.state.installation_volume

    def switch_regime(self, regime: str) -> None:
        """Move the job to another regime; on failure the current one stays in force."""
        previous = (self.profile, self.params)
        self.profile = replace(get_profile(regime), tables=self.profile.tables)
        if self.params is not None:
            self.params = replace(self.params, regime=self.profile.name)
        try:
            self._refresh()
        except UpCalcError:
            self.profile, self.params = previous
            raise
        logger.info("Regime switched to %s", self.profile.name)

    def choose_installation_type(self, kind: str) -> None:
        kind = normalize_choice(kind, ("new", "existing"), "installation type")
        if self.state.outcomes or self.state.active_test:
            raise SequenceViolation("Installation type cannot change once testing has started")
        self.state.installation_type = kind
        self.state.stage = "installation_type_chosen"
        logger.info("Installation type: %s", kind)
        self._refresh()

    # --- test flow -----------------------------------------------------
    def select_test(self, test_type: str) -> str:
        test_type = normalize_choice(test_type, SEQUENCE, "test type")
        if self.state.stage == "job_setup":
            raise SequenceViolation("Choose the installation type before selecting a test")
        active = self.state.active_test
        if self.state.stage in _IN_PROGRESS and active and active != test_type:
            raise SequenceViolation(f"The {active} test is in progress; abandon it first")
        allowed = self.available_tests()
        if test_type not in allowed:
            raise SequenceViolation(
                f"The {test_type} test is not available (allowed: {', '.join(allowed) or 'none'})"
            )
        self._gate()
        self.state.pending.pop(test_type, None)
        self.state.pending.pop("let_by", None)
        self.state.let_by_passed = False
        self.state.active_test = test_type
        self.state.stage = "let_by_pending" if self.requires_let_by(test_type) else "test_selected"
        logger.info("Selected %s test (stage %s)", test_type, self.state.stage)
        return self.state.stage

    def let_by_spec(self):
        if not self.requires_let_by() or self.state.stage not in ("let_by_pending", "let_by_done"):
            raise SequenceViolation("No let-by test is due")
        self._gate()
        spec = self._derive("let_by")
        self.state.pending["let_by"] = spec
        return spec

    def record_let_by(self, reading: ActualReading | Dict[str, Any]) -> TestOutcome:
        if not self.requires_let_by() or self.state.stage not in ("let_by_pending", "let_by_done"):
            raise SequenceViolation("No let-by test is due")
        if self.state.let_by_passed:
            raise SequenceViolation("Let-by test has already passed")
        outcome = self._evaluate_fresh("let_by", reading)
        self.state.let_by_passed = outcome.passed
        self.state.stage = "let_by_done"
        return outcome

    def configure(self,
                  purge_direction: str | None = None,
                  hose: PurgeConduit | Dict[str, Any] | None = None,
                  stack: PurgeConduit | Dict[str, Any] | None = None):
        """Resolve the spec for the active test and await its reading."""
        t = self.state.active_test
        if t is None or self.state.stage not in ("test_selected", "let_by_pending", "let_by_done",
                                                 "configuring", "awaiting_reading"):
            raise SequenceViolation("Select a test before configuring it")
        if self.requires_let_by() and not self.state.let_by_passed:
            raise SequenceViolation("Existing installations need a passed let-by test before the tightness test")
        self._gate()
        previous = dict(self.purge_options)
        try:
            if purge_direction is not None:
                self.purge_options["purge_direction"] = normalize_purge_direction(purge_direction)
            if hose is not None:
                self.purge_options["hose"] = _as_conduit(hose, "hose")
            if stack is not None:
                self.purge_options["stack"] = _as_conduit(stack, "stack")
            spec = self._derive(t)
        except UpCalcError:
            self.purge_options = previous
            raise
        self.state.stage = "configuring"
        self.state.pending[t] = spec
        self.state.stage = "awaiting_reading"
        return spec

    def submit_reading(self, reading: ActualReading | Dict[str, Any]) -> TestOutcome:
        """Evaluate a reading for the active test against a freshly derived spec."""
        t = self.state.active_test
        if t is None or self.state.stage != "awaiting_reading":
            raise SequenceViolation("No test is awaiting a reading")
        if self.requires_let_by() and not self.state.let_by_passed:
            raise SequenceViolation("Existing installations need a passed let-by test before the tightness test")
        outcome = self._evaluate_fresh(t, reading)
        self.state.pending.pop(t, None)
        self.state.stage = "evaluated"
        nxt = self.next_test()
        logger.info("%s test %s; next: %s", t, outcome.result, nxt or "none")
        return outcome

    def _evaluate_fresh(self, test_type: str, reading: ActualReading | Dict[str, Any]) -> TestOutcome:
        self._gate()
        if not isinstance(reading, ActualReading):
            reading = ActualReading.from_dict(reading)
        self._refresh()
        self._gate()
        spec = self._derive(test_type)
        ev = evaluate(test_type, spec, reading)
        outcome = TestOutcome(test_type=test_type, result=ev.result, spec=spec, reading=reading, evaluation=ev)
        self.state.outcomes.append(outcome)
        return outcome

    def abandon(self) -> None:
        """Drop the active test; recorded outcomes are kept."""
        t = self.state.active_test
        if t is None:
            return
        self.state.pending.pop(t, None)
        self.state.pending.pop("let_by", None)
        self.state.active_test = None
        self.state.let_by_passed = False
        self.state.stage = "installation_type_chosen"
        logger.info("Abandoned %s test", t)

    def clear_all(self) -> None:
        """Reset configuration and state; only job details survive."""
        self.pipes = []
        self.meter = MeterConfig()
        self.params = None
        self.purge_options = {"purge_direction": "air_to_gas", "hose": None, "stack": None}
        self.state = WorkflowState()
        logger.info("Cleared job %s", self.job.job_number or "<unnamed>")

    def summary(self) -> Dict[str, Any]:
        iv = self.state.installation_volume
        return {
            "stage": self.state.stage,
            "regime": self.profile.name,
            "installation_type": self.state.installation_type,
            "active_test": self.state.active_test,
            "installation_volume_m3": iv.total if iv else None,
            "directive": self.state.directive,
            "next_test": self.next_test(),
            "results": {k: o.result for k, o in self.latest_outcomes().items()},
        }


def run_job(job: "JobFile", profile: RegimeProfile | None = None) -> Sequencer:
    """Drive a loaded job file through as much of the sequence as its readings allow.

    Stops at the first missing reading, failed let-by or blocked regime
    gate; the returned sequencer records how far the job got.
    """
    seq = Sequencer(job.details, profile or job.regime, tables=job.tables, strict=job.strict)
    seq.update_configuration(pipes=job.pipes, meter=job.meter, params=job.params)
    seq.choose_installation_type(job.installation_type)
    if seq.is_blocked:
        return seq
    purge_kw = {k: job.purge[k] for k in ("purge_direction", "hose", "stack") if k in job.purge}
    test: Optional[str] = job.first_test
    while test:
        reading = job.readings.get(test)
        if reading is None:
            break
        seq.select_test(test)
        if seq.requires_let_by():
            let_by = job.readings.get("let_by")
            if let_by is None:
                break
            seq.let_by_spec()
            if not seq.record_let_by(let_by).passed:
                break
        seq.configure(**(purge_kw if test == "purge" else {}))
        seq.submit_reading(reading)
        test = seq.next_test()
    return seq
