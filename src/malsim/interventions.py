"""
Intervention descriptors.

Interventions reach humans through two ordered lists: continuous
deployments, triggered when a human reaches a target age, and timed
deployments, triggered at a time of the intervention period. This module
defines the per-human effects, the descriptor types of both lists and the
builders that read them from a scenario.
"""

import logging
import math
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from utils.logging import log_call
from utils.config import to_plain_config

from .case_management import CaseManagementTree, HealthSystem
from .decision import MORBIDITY_FIELD, PathogenesisState
from .drugs import DrugRegistry
from .errors import ScenarioError, UnimplementedError
from .random_stream import RandomStream
from .reporting import Surveys
from .sim_time import SimClock, SimDate, SimTime

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_YRS = 100.0


class Method(Enum):
    """How an effect reached the human."""

    TIMED = "timed"
    CTS = "continuous"


class EffectKind(Enum):
    ITN = "itn"
    IRS = "irs"
    VECTOR_DETERRENT = "vector_deterrent"
    COHORT = "cohort"
    IMMUNE_SUPPRESSION = "immune_suppression"
    VACCINE = "vaccine"
    IPT = "ipt"
    MDA = "mda"


# Effects whose current protection can be queried for cumulative coverage
PROTECTION_KINDS = (
    EffectKind.ITN, EffectKind.IRS, EffectKind.VECTOR_DETERRENT,
    EffectKind.COHORT,
)


@dataclass
class DeploymentContext:
    """Simulation state deployments read and the stream they draw from."""

    clock: SimClock
    rng: RandomStream
    surveys: Surveys
    health_system: Optional[HealthSystem] = None


@dataclass(frozen=True)
class HumanEffect:
    """
    One effect deployed to a human.

    ``mda_tree`` is the drug-administration tree of an MDA effect at 1-day
    steps; at 5-day steps an MDA effect instead treats anyone with at least
    ``min_infections`` infections.
    """

    kind: EffectKind
    name: str = ""
    description: Optional[Dict[str, Any]] = field(default=None, compare=False)
    mda_tree: Optional[CaseManagementTree] = field(default=None, compare=False)
    min_infections: int = 0

    def supports(self, method: Method) -> bool:
        # TODO: MDA through continuous deployment needs its own survey measure
        return not (self.kind is EffectKind.MDA and method is Method.CTS)


@log_call
def deploy_effect(effect: HumanEffect, human, method: Method,
                  ctx: DeploymentContext) -> None:
    """Apply one effect to one human."""
    now = ctx.clock.now()
    kind = effect.kind
    if kind is EffectKind.ITN:
        human.deploy_itn(now)
    elif kind is EffectKind.IRS:
        human.deploy_irs(now)
    elif kind is EffectKind.VECTOR_DETERRENT:
        human.deploy_va(now)
    elif kind is EffectKind.COHORT:
        human.add_to_cohort()
    elif kind is EffectKind.IMMUNE_SUPPRESSION:
        human.immune_suppression()
    elif kind is EffectKind.VACCINE:
        human.deploy_vaccine(now)
    elif kind is EffectKind.IPT:
        human.deploy_ipt()
    elif kind is EffectKind.MDA:
        if method is not Method.TIMED:
            raise UnimplementedError(
                f"MDA via continuous deployment (effect '{effect.name}')"
            )
        if effect.mda_tree is not None:
            age_years = human.age(now).in_years()
            effect.mda_tree.execute(
                human.medicate_queue, PathogenesisState.NONE, human,
                age_years, ctx.surveys.age_group(age_years), ctx.rng
            )
            human.mass_drug_administration(cleared=False)
        else:
            human.mass_drug_administration(
                cleared=human.infections >= effect.min_infections
            )
    else:
        raise TypeError(f"unknown effect kind {kind!r}")
    ctx.surveys.report(
        kind.value, ctx.surveys.age_group(human.age(now).in_years()),
        human.in_cohort,
    )


@log_call
def is_protected(human, kind: EffectKind, now: SimTime,
                 max_age: SimTime) -> bool:
    """Whether ``human`` is still protected by a recent ``kind`` effect."""
    if kind is EffectKind.ITN:
        return human.has_itn_protection(now, max_age)
    if kind is EffectKind.IRS:
        return human.has_irs_protection(now, max_age)
    if kind is EffectKind.VECTOR_DETERRENT:
        return human.has_va_protection(now, max_age)
    if kind is EffectKind.COHORT:
        return human.in_cohort
    raise UnimplementedError(
        f"cumulative coverage for {kind.value} interventions"
    )


@dataclass(frozen=True)
class HumanIntervention:
    """A named group of effects deployed together."""

    name: str
    effects: Tuple[HumanEffect, ...]

    def deploy(self, human, method: Method, ctx: DeploymentContext) -> None:
        for effect in self.effects:
            deploy_effect(effect, human, method, ctx)


# -----  continuous deployment  -----

@dataclass(frozen=True)
class ContinuousDeployment:
    """Deployment to each human on reaching ``deploy_age``."""

    begin: SimTime
    end: SimTime
    deploy_age: SimTime
    cohort_only: bool
    coverage: float
    intervention: HumanIntervention

    def filter_and_deploy(self, human, ctx: DeploymentContext) -> bool:
        """Deploy if the human is exactly at the target age.

        Returns False while the target age lies in the human's future, so
        that this and all later descriptors are left for later steps.
        """
        age = ctx.clock.now() - human.date_of_birth
        if self.deploy_age > age:
            return False
        if self.deploy_age == age:
            interv = ctx.clock.interv_time()
            if (self.begin <= interv and interv < self.end and
                    (not self.cohort_only or human.in_cohort) and
                    ctx.rng.uniform_01() < self.coverage):  # RNG call last
                self.intervention.deploy(human, Method.CTS, ctx)
        # else: the deployment age was missed; skip it
        return True


# -----  timed deployments  -----

@dataclass(frozen=True)
class TimedMassDeployment:
    """Deployment to each eligible human with probability ``coverage``."""

    time: SimTime
    min_age: SimTime
    max_age: SimTime
    cohort_only: bool
    coverage: float
    intervention: HumanIntervention


@dataclass(frozen=True)
class TimedCumulativeDeployment:
    """Top up coverage of the eligible group to ``coverage``.

    Humans protected by a ``protection`` effect younger than
    ``max_intervention_age`` count as covered.
    """

    time: SimTime
    min_age: SimTime
    max_age: SimTime
    cohort_only: bool
    coverage: float
    intervention: HumanIntervention
    protection: EffectKind
    max_intervention_age: SimTime


@dataclass(frozen=True)
class TimedChangeHealthSystem:
    time: SimTime
    health_system: HealthSystem = field(compare=False)


@dataclass(frozen=True)
class TimedChangeEIR:
    time: SimTime
    eir: Dict[str, Any] = field(compare=False)


@dataclass(frozen=True)
class TimedUninfectVectors:
    time: SimTime


@dataclass(frozen=True)
class TimedInsertR0Case:
    time: SimTime


@dataclass(frozen=True)
class TimedVectorPopDeployment:
    time: SimTime
    instance: int


@dataclass(frozen=True)
class TimedSentinel:
    """Terminates the timed list; never deployed."""

    time: SimTime = field(default_factory=SimTime.future)


TimedDeployment = Union[
    TimedMassDeployment, TimedCumulativeDeployment, TimedChangeHealthSystem,
    TimedChangeEIR, TimedUninfectVectors, TimedInsertR0Case,
    TimedVectorPopDeployment, TimedSentinel,
]

# Deployments that only change process-wide configuration; these are
# replayed when resuming from a checkpoint
CONFIGURATION_CHANGES = (TimedChangeHealthSystem, TimedChangeEIR)


# -----  imported infections  -----

class ImportedInfections:
    """
    Infections imported from outside the simulated population.

    Parameters
    ----------
    rates : list of (SimTime, float)
        Rate (infections per 1000 people per year) applying from each time
        of the intervention period onwards, sorted by time
    period : SimTime
        Period after which the rates repeat; zero for no repetition
    years_per_step : float
        Length of a time step in years
    """

    def __init__(self, rates: List[Tuple[SimTime, float]], period: SimTime,
                 years_per_step: float):
        self.times = [t for t, _ in rates]
        self.rates = [r for _, r in rates]
        self.period = period
        self.years_per_step = years_per_step

    @classmethod
    @log_call
    def from_config(cls, cfg, clock: SimClock) -> "ImportedInfections":
        cfg = to_plain_config(cfg) or {}
        period = clock.units.from_ts(int(cfg.get("period", 0)))
        if period < SimTime.zero():
            raise ScenarioError("imported infections: period must not be negative")
        rates = []
        for entry in cfg.get("rates") or ():
            t = parse_time(_required(entry, "time", "imported infections rate"),
                           clock)
            value = float(_required(entry, "value",
                                    "imported infections rate"))
            if value < 0:
                raise ScenarioError("imported infections: rate must not be negative")
            if t < SimTime.zero():
                raise ScenarioError("imported infections: time must not be negative")
            if period > SimTime.zero() and t >= period:
                raise ScenarioError(
                    "imported infections: times must be less than the period"
                )
            if rates and t < rates[-1][0]:
                raise ScenarioError(
                    "imported infections: rates must be ordered by time"
                )
            rates.append((t, value))
        return cls(rates, period, clock.units.years_per_step)

    def rate_at(self, interv_time: SimTime) -> float:
        if not self.times:
            return 0.0
        t = interv_time
        if self.period > SimTime.zero():
            t = SimTime(t.in_days() % self.period.in_days())
        index = bisect_right(self.times, t) - 1
        if index < 0:
            return 0.0
        return self.rates[index]

    @log_call
    def do_import(self, population, ctx: DeploymentContext) -> int:
        """Add imported infections; one draw per human while the rate is positive."""
        rate = self.rate_at(ctx.clock.interv_time())
        if rate <= 0.0:
            return 0
        prob = 1.0 - math.exp(-rate / 1000.0 * self.years_per_step)
        now = ctx.clock.now()
        n = 0
        for human in population:
            if ctx.rng.uniform_01() < prob:
                human.add_infection()
                ctx.surveys.report(
                    "imported_infections",
                    ctx.surveys.age_group(human.age(now).in_years()),
                    human.in_cohort,
                )
                n += 1
        return n


# -----  builders  -----

@dataclass
class InterventionLists:
    """Everything read from the interventions section of a scenario."""

    continuous: List[ContinuousDeployment] = field(default_factory=list)
    timed: List[TimedDeployment] = field(default_factory=list)
    imported_infections: Optional[ImportedInfections] = None
    human_interventions: List[HumanIntervention] = field(default_factory=list)
    cohort_enabled: bool = False


@log_call
def parse_time(value, clock: SimClock) -> SimTime:
    """Intervention time from a step count or a ``YYYY-MM-DD`` date."""
    if isinstance(value, str):
        return SimDate.parse(value) - clock.start_date
    if isinstance(value, bool) or value is None:
        raise ScenarioError(f"invalid intervention time {value!r}")
    return clock.units.from_ts(int(value))


def _required(entry, key: str, what: str):
    try:
        return entry[key]
    except KeyError:
        raise ScenarioError(f"{what} needs '{key}'") from None


def _timed_time(value, clock: SimClock) -> SimTime:
    t = parse_time(value, clock)
    if t < SimTime.zero():
        raise ScenarioError(
            "timed intervention deployment: may not be negative"
        )
    if t >= clock.intervention_period_length():
        logger.warning(
            "timed intervention deployment at time %d days happens after "
            "the end of the simulation", t.in_days()
        )
    return t


def _coverage(entry, what: str) -> float:
    coverage = float(entry.get("coverage", 1.0))
    if not 0.0 <= coverage <= 1.0:
        raise ScenarioError(f"{what} coverage must be in range [0,1]")
    return coverage


@log_call
def make_continuous(entry, intervention: HumanIntervention,
                    clock: SimClock) -> ContinuousDeployment:
    """Validate and build one continuous (age-based) deployment."""
    units = clock.units
    begin = parse_time(entry.get("begin", 0), clock)
    end_cfg = entry.get("end")
    end = SimTime.future() if end_cfg is None else parse_time(end_cfg, clock)
    if begin < SimTime.zero() or end < begin:
        raise ScenarioError(
            "continuous intervention must have 0 <= begin <= end"
        )
    target_age_yrs = float(
        _required(entry, "target_age_yrs", "continuous intervention")
    )
    deploy_age = units.from_years_n(target_age_yrs)
    if deploy_age < units.one_ts():
        raise ScenarioError(
            f"continuous intervention with target age {target_age_yrs} "
            f"years corresponds to timestep {units.in_steps(deploy_age)}; "
            "must be at least timestep 1."
        )
    if deploy_age > clock.max_human_age:
        raise ScenarioError(
            "continuous intervention must have target age no greater than "
            f"{clock.max_human_age.in_years()}"
        )
    return ContinuousDeployment(
        begin=begin,
        end=end,
        deploy_age=deploy_age,
        cohort_only=bool(entry.get("cohort", False)),
        coverage=_coverage(entry, "continuous intervention"),
        intervention=intervention,
    )


@log_call
def make_timed_mass(entry, intervention: HumanIntervention, clock: SimClock,
                    protection: Optional[EffectKind] = None):
    """Mass deployment, or cumulative deployment if the entry has
    ``cumulative_with_max_age`` and a protection kind is given."""
    units = clock.units
    time = _timed_time(
        _required(entry, "time", f"timed '{intervention.name}' deployment"),
        clock,
    )
    min_age = units.from_years_n(float(entry.get("min_age", 0.0)))
    max_age = units.from_years_n(
        float(entry.get("max_age", DEFAULT_MAX_AGE_YRS))
    )
    coverage = _coverage(entry, "timed intervention")
    if min_age < SimTime.zero() or max_age < min_age:
        raise ScenarioError(
            "timed intervention must have 0 <= minAge <= maxAge"
        )
    cohort_only = bool(entry.get("cohort", False))
    cum_max_age = entry.get("cumulative_with_max_age")
    if cum_max_age is None:
        return TimedMassDeployment(time, min_age, max_age, cohort_only,
                                   coverage, intervention)
    if protection is None:
        raise ScenarioError(
            f"'{intervention.name}' deployments do not support "
            "cumulative_with_max_age"
        )
    return TimedCumulativeDeployment(
        time, min_age, max_age, cohort_only, coverage, intervention,
        protection, units.from_years_n(float(cum_max_age)),
    )


def _simple_intervention(kind: EffectKind) -> HumanIntervention:
    return HumanIntervention(kind.value, (HumanEffect(kind, kind.value),))


def _build_human_effect(entry, clock: SimClock,
                        drugs: DrugRegistry) -> HumanEffect:
    effect_id = str(_required(entry, "id", "interventions.human effect"))
    kind = entry.get("type")
    if kind == "mda":
        if clock.units.interval == 1:
            if entry.get("description") is None:
                raise ScenarioError(
                    "interventions.human.effect MDA description element "
                    "required for MDA with 1-day timestep"
                )
            tree = CaseManagementTree.from_config(entry["description"], drugs)
            if tree.input_mask & tree.layout.field(MORBIDITY_FIELD).mask:
                raise ScenarioError(
                    f"MDA effect '{effect_id}' tree cannot branch on morbidity"
                )
            return HumanEffect(EffectKind.MDA, effect_id, mda_tree=tree)
        diagnostic = entry.get("diagnostic") or {}
        return HumanEffect(
            EffectKind.MDA, effect_id,
            min_infections=int(diagnostic.get("min_infections", 0)),
        )
    if kind == "vaccine":
        return HumanEffect(EffectKind.VACCINE, effect_id,
                           description=entry.get("description"))
    if kind == "ipt":
        return HumanEffect(EffectKind.IPT, effect_id,
                           description=entry.get("description"))
    raise ScenarioError(
        f"expected intervention.human.effect '{effect_id}' to have a type "
        f"of mda, vaccine or ipt, got {kind!r}"
    )


def _build_human(section, clock: SimClock, drugs: DrugRegistry,
                 lists: InterventionLists) -> bool:
    """Read the human section; returns True if a vaccine effect exists."""
    effects: Dict[str, HumanEffect] = {}
    for entry in section.get("effects") or ():
        effect = _build_human_effect(entry, clock, drugs)
        if effect.name in effects:
            raise ScenarioError(
                f"human intervention effect id '{effect.name}' used twice"
            )
        effects[effect.name] = effect
    has_vaccine = any(e.kind is EffectKind.VACCINE for e in effects.values())

    for i, elt in enumerate(section.get("interventions") or ()):
        name = str(elt.get("name", f"intervention{i}"))
        members = []
        for effect_id in elt.get("effects") or ():
            if effect_id not in effects:
                raise ScenarioError(
                    f'human intervention references effect with id '
                    f'"{effect_id}", but no effect with this id was found'
                )
            members.append(effects[effect_id])
        intervention = HumanIntervention(name, tuple(members))
        for entry in elt.get("continuous") or ():
            for effect in intervention.effects:
                if not effect.supports(Method.CTS):
                    raise UnimplementedError(
                        f"{effect.kind.value.upper()} via cts deployment "
                        f"(intervention '{name}', effect '{effect.name}')"
                    )
            lists.continuous.append(make_continuous(entry, intervention, clock))
        timed = elt.get("timed") or {}
        if timed.get("cumulative_coverage") is not None:
            raise UnimplementedError(
                f"cumulative coverage for human interventions "
                f"(intervention '{name}')"
            )
        for entry in timed.get("deploy") or ():
            lists.timed.append(make_timed_mass(entry, intervention, clock))
        lists.human_interventions.append(intervention)
    return has_vaccine


def _times(section, clock: SimClock) -> List[SimTime]:
    return [_timed_time(t, clock) for t in section.get("timed") or ()]


@log_call
def build_interventions(cfg, clock: SimClock, transmission,
                        drugs: DrugRegistry) -> InterventionLists:
    """
    Read every deployment of a scenario's interventions section.

    Parameters
    ----------
    cfg : mapping
        The interventions section
    clock : SimClock
        Clock of the run (step length, dates and maximum age)
    transmission : TransmissionModel
        Receives intervention descriptions
    drugs : DrugRegistry
        Drugs available to case-management trees

    Returns
    -------
    lists : InterventionLists
        Continuous and timed lists, stable-sorted by trigger value; the
        timed list ends with a sentinel.

    Raises
    ------
    ScenarioError
        If any deployment is invalid
    UnimplementedError
        For unsupported deployment methods
    """
    cfg = to_plain_config(cfg) or {}
    lists = InterventionLists()

    for entry in cfg.get("change_hs") or ():
        lists.timed.append(TimedChangeHealthSystem(
            _timed_time(_required(entry, "time", "change_hs"), clock),
            HealthSystem.from_config(
                _required(entry, "health_system", "change_hs"), drugs,
                clock.units,
            ),
        ))
    for entry in cfg.get("change_eir") or ():
        lists.timed.append(TimedChangeEIR(
            _timed_time(_required(entry, "time", "change_eir"), clock),
            dict(_required(entry, "eir", "change_eir")),
        ))

    has_vaccine = False
    if cfg.get("human"):
        has_vaccine = _build_human(cfg["human"], clock, drugs, lists)

    itn = cfg.get("itn") or {}
    if itn.get("timed") or itn.get("continuous"):
        transmission.set_itn_description(itn.get("description"))
        intervention = _simple_intervention(EffectKind.ITN)
        for entry in itn.get("continuous") or ():
            lists.continuous.append(make_continuous(entry, intervention, clock))
        for entry in itn.get("timed") or ():
            lists.timed.append(make_timed_mass(entry, intervention, clock,
                                               EffectKind.ITN))

    irs = cfg.get("irs") or {}
    if irs.get("timed"):
        transmission.set_irs_description(irs.get("description"))
        intervention = _simple_intervention(EffectKind.IRS)
        for entry in irs["timed"]:
            lists.timed.append(make_timed_mass(entry, intervention, clock,
                                               EffectKind.IRS))

    va = cfg.get("vector_deterrent") or {}
    if va.get("timed"):
        transmission.set_va_description(va.get("description"))
        intervention = _simple_intervention(EffectKind.VECTOR_DETERRENT)
        for entry in va["timed"]:
            lists.timed.append(make_timed_mass(entry, intervention, clock,
                                               EffectKind.VECTOR_DETERRENT))

    cohort = cfg.get("cohort") or {}
    if cohort.get("timed") or cohort.get("continuous"):
        lists.cohort_enabled = True
        intervention = _simple_intervention(EffectKind.COHORT)
        for entry in cohort.get("continuous") or ():
            lists.continuous.append(make_continuous(entry, intervention, clock))
        for entry in cohort.get("timed") or ():
            lists.timed.append(make_timed_mass(entry, intervention, clock,
                                               EffectKind.COHORT))

    if cfg.get("imported_infections"):
        lists.imported_infections = ImportedInfections.from_config(
            cfg["imported_infections"], clock
        )

    suppression = cfg.get("immune_suppression") or {}
    if suppression.get("timed"):
        intervention = _simple_intervention(EffectKind.IMMUNE_SUPPRESSION)
        for entry in suppression["timed"]:
            lists.timed.append(make_timed_mass(entry, intervention, clock))

    r0 = cfg.get("insert_r0_case") or {}
    if r0.get("timed"):
        if not has_vaccine:
            raise ScenarioError(
                "insert_r0_case requires a vaccine effect in "
                "interventions.human"
            )
        lists.timed.extend(TimedInsertR0Case(t) for t in _times(r0, clock))

    uninfect = cfg.get("uninfect_vectors") or {}
    lists.timed.extend(
        TimedUninfectVectors(t) for t in _times(uninfect, clock)
    )

    instance = 0
    for elt in cfg.get("vector_pop") or ():
        if elt.get("timed"):
            transmission.init_vector_interv(elt.get("description"), instance)
            lists.timed.extend(
                TimedVectorPopDeployment(t, instance)
                for t in _times(elt, clock)
            )
            instance += 1

    # stable sorts keep declaration order for equal trigger values
    lists.continuous.sort(key=lambda d: d.deploy_age.in_days())
    lists.timed.sort(key=lambda d: d.time.in_days())
    lists.timed.append(TimedSentinel())
    logger.info(
        "built %d continuous and %d timed deployments",
        len(lists.continuous), len(lists.timed) - 1,
    )
    return lists
