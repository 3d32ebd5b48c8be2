"""
Clinical model.

Generates clinical episodes at a constant per-person rate and sends each one
through the current case-management tree. Episode rates are a stand-in for
the pathogenesis model; only the mechanics of feeding the tree matter here.
"""

import math

from utils.logging import log_call

from .case_management import HealthSystem
from .decision import Morbidity, morbidity_of, state_for_morbidity
from .random_stream import RandomStream
from .reporting import Surveys
from .sim_time import SimClock, SimTime


class ClinicalModel:
    """
    Per-human clinical update.

    Parameters
    ----------
    episode_rate : float
        Clinical episodes per person-year
    severe_fraction : float
        Probability that an episode is severe
    years_per_step : float
        Length of a time step in years
    """

    def __init__(self, episode_rate: float, severe_fraction: float,
                 years_per_step: float):
        self.episode_rate = episode_rate
        self.severe_fraction = severe_fraction
        self.p_episode = 1.0 - math.exp(-episode_rate * years_per_step)

    @classmethod
    @log_call
    def from_config(cls, cfg, years_per_step: float) -> "ClinicalModel":
        return cls(float(cfg.episode_rate), float(cfg.severe_fraction),
                   years_per_step)

    def morbidity(self, human, ts0: SimTime, health_system: HealthSystem,
                  rng: RandomStream) -> Morbidity:
        """Severity of a new episode; draws once for severity."""
        if rng.uniform_01() < self.severe_fraction:
            return Morbidity.SEVERE
        if ts0 - human.last_episode < health_system.memory:
            return Morbidity.UC2
        return Morbidity.UC1

    @log_call
    def update(self, human, clock: SimClock, health_system: HealthSystem,
               rng: RandomStream, surveys: Surveys) -> int:
        """
        Update one human for the current step.

        Draws once for the episode test; an episode draws once more for
        severity, then once per branch set passed in the tree.

        Returns
        -------
        cmid : int
            Decision identifier of the episode's treatment, or -1 if the
            human had no episode
        """
        ts0 = clock.ts0()
        human.process_medications(clock.units.interval)
        if rng.uniform_01() >= self.p_episode:
            return -1

        age_years = (ts0 - human.date_of_birth).in_years()
        age_group = surveys.age_group(age_years)
        pg_state = state_for_morbidity(
            self.morbidity(human, ts0, health_system, rng)
        )
        human.last_episode = ts0
        surveys.report("episodes", age_group, human.in_cohort)
        cmid = health_system.tree.execute(
            human.medicate_queue, pg_state, human, age_years, age_group, rng
        )
        surveys.report_treatment(morbidity_of(pg_state), age_group,
                                 human.in_cohort)
        return cmid
