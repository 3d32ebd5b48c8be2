"""
Intervention deployment scheduler.

``InterventionManager`` walks the timed list with one global cursor and the
continuous list with one cursor per human, deploying between population
updates. Both cursors only move forward.
"""

import logging
from typing import List, Optional

from utils.logging import log_call

from .case_management import HealthSystem
from .drugs import DrugRegistry
from .interventions import (
    CONFIGURATION_CHANGES,
    ContinuousDeployment,
    DeploymentContext,
    ImportedInfections,
    Method,
    TimedChangeEIR,
    TimedChangeHealthSystem,
    TimedCumulativeDeployment,
    TimedDeployment,
    TimedInsertR0Case,
    TimedMassDeployment,
    TimedSentinel,
    TimedUninfectVectors,
    TimedVectorPopDeployment,
    build_interventions,
    is_protected,
)
from .sim_time import SimTime

logger = logging.getLogger(__name__)


def _eligible(human, now: SimTime, desc) -> bool:
    age = now - human.date_of_birth
    return (desc.min_age <= age and age < desc.max_age and
            (not desc.cohort_only or human.in_cohort))


@log_call
def deploy_mass(desc: TimedMassDeployment, population,
                ctx: DeploymentContext) -> int:
    """One draw per eligible human, in population order.

    Returns the number of humans deployed to.
    """
    now = ctx.clock.now()
    n = 0
    for human in population:
        if _eligible(human, now, desc):
            if ctx.rng.uniform_01() < desc.coverage:
                desc.intervention.deploy(human, Method.TIMED, ctx)
                n += 1
    return n


@log_call
def deploy_cumulative(desc: TimedCumulativeDeployment, population,
                      ctx: DeploymentContext) -> int:
    """Bring coverage of the eligible group up to ``desc.coverage``.

    Protected humans count towards coverage; only unprotected ones are
    sampled, with probability ``(c - p) / (1 - p)``. No draws happen when
    the protected proportion ``p`` already reaches the target ``c``.
    """
    now = ctx.clock.now()
    total = 0
    unprotected = []
    for human in population:
        if _eligible(human, now, desc):
            total += 1
            if not is_protected(human, desc.protection, now,
                                desc.max_intervention_age):
                unprotected.append(human)
    if total == 0:
        return 0

    prop_protected = (total - len(unprotected)) / total
    if prop_protected >= desc.coverage:
        return 0
    additional = (desc.coverage - prop_protected) / (1.0 - prop_protected)
    n = 0
    for human in unprotected:
        if ctx.rng.uniform_01() < additional:
            desc.intervention.deploy(human, Method.TIMED, ctx)
            n += 1
    return n


class InterventionManager:
    """
    Deploys a scenario's interventions.

    Parameters
    ----------
    cfg : mapping
        The interventions section of the scenario
    ctx : DeploymentContext
        Clock, random stream, surveys and health system of the run
    transmission : TransmissionModel
        Transmission collaborator receiving vector-side interventions
    drugs : DrugRegistry
        Drugs available to case-management trees in the scenario

    Attributes
    ----------
    continuous : list of ContinuousDeployment
        Sorted by target age
    timed : list
        Sorted by time, terminated by a ``TimedSentinel``
    next_timed : int
        Index of the next timed deployment
    """

    def __init__(self, cfg, ctx: DeploymentContext, transmission,
                 drugs: DrugRegistry):
        self.ctx = ctx
        lists = build_interventions(cfg, ctx.clock, transmission, drugs)
        self.continuous: List[ContinuousDeployment] = lists.continuous
        self.timed: List[TimedDeployment] = lists.timed
        self.imported_infections: Optional[ImportedInfections] = (
            lists.imported_infections
        )
        self.human_interventions = lists.human_interventions
        self.cohort_enabled = lists.cohort_enabled
        self.next_timed = 0

    @log_call
    def deploy(self, population) -> None:
        """Deploy everything due at the current time.

        Nothing happens before the intervention period starts.
        """
        interv_time = self.ctx.clock.interv_time()
        if interv_time < SimTime.zero():
            return

        if self.imported_infections is not None:
            self.imported_infections.do_import(population, self.ctx)

        while self.timed[self.next_timed].time <= interv_time:
            self.deploy_timed(self.timed[self.next_timed], population)
            self.next_timed += 1

        n_cts = len(self.continuous)
        for human in population:
            next_cts = human.next_cts_dist
            while next_cts < n_cts:
                if not self.continuous[next_cts].filter_and_deploy(human,
                                                                  self.ctx):
                    break  # this and all remaining happen in the future
                next_cts = human.incr_next_cts_dist()

    @log_call
    def deploy_timed(self, desc, population) -> None:
        """Execute one timed deployment against the whole population."""
        if isinstance(desc, TimedMassDeployment):
            deploy_mass(desc, population, self.ctx)
        elif isinstance(desc, TimedCumulativeDeployment):
            deploy_cumulative(desc, population, self.ctx)
        elif isinstance(desc, TimedChangeHealthSystem):
            self._health_system().change(desc.health_system)
        elif isinstance(desc, TimedChangeEIR):
            population.transmission.change_eir(desc.eir)
        elif isinstance(desc, TimedUninfectVectors):
            population.transmission.uninfect_vectors()
        elif isinstance(desc, TimedInsertR0Case):
            # pick a human
            i = int(self.ctx.rng.uniform_01() * population.size)
            human = population[i]
            human.r0_vaccines()
            human.add_infection()
        elif isinstance(desc, TimedVectorPopDeployment):
            population.transmission.deploy_vector_pop_interv(desc.instance)
        elif isinstance(desc, TimedSentinel):
            raise AssertionError("sentinel deployment reached")
        else:
            raise TypeError(f"unknown timed deployment {type(desc).__name__}")

    def _health_system(self) -> HealthSystem:
        if self.ctx.health_system is None:
            raise RuntimeError("health-system change without a health system")
        return self.ctx.health_system

    @log_call
    def load_from_checkpoint(self, population,
                             interv_time: SimTime) -> int:
        """Replay configuration changes made before ``interv_time``.

        Other past deployments are skipped since their effects are part of
        the checkpointed population. Returns the number replayed.
        """
        assert self.next_timed == 0
        replayed = 0
        while self.timed[self.next_timed].time < interv_time:
            desc = self.timed[self.next_timed]
            if isinstance(desc, CONFIGURATION_CHANGES):
                self.deploy_timed(desc, population)
                replayed += 1
            self.next_timed += 1
        logger.info("replayed %d configuration changes; next timed "
                    "deployment index %d", replayed, self.next_timed)
        return replayed
