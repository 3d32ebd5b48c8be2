import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from omegaconf import DictConfig

from core.data_structures import Human, Population
from malsim.case_management import HealthSystem
from malsim.checkpoint import (
    CheckpointReader,
    CheckpointWriter,
    read_human,
    write_human,
)
from malsim.clinical import ClinicalModel
from malsim.drugs import DrugRegistry, build_registry
from malsim.interventions import DeploymentContext
from malsim.random_stream import RandomStream
from malsim.reporting import Surveys
from malsim.scheduler import InterventionManager
from malsim.sim_time import SimClock, SimDate, SimTime, TimeUnits
from utils.logging import log_call
from utils.validation import validate_config

logger = logging.getLogger(__name__)

CHECKPOINT_NAME = "checkpoint.txt"


@dataclass
class TemporalEngine:
    """
    Step-by-step simulation of one scenario.

    Steps run in two phases: a warm-up, during which no interventions are
    deployed, then the intervention period from ``simulation.start_date``
    to ``simulation.end_date``. Interventions are deployed between updates;
    the clinical and demographic updates happen inside them.
    """

    cfg: DictConfig
    units: TimeUnits = field(init=False)
    clock: SimClock = field(init=False)
    rng: RandomStream = field(init=False)
    surveys: Surveys = field(init=False)
    drugs: DrugRegistry = field(init=False)
    health_system: HealthSystem = field(init=False)
    population: Population = field(init=False)
    clinical: ClinicalModel = field(init=False)
    interventions: InterventionManager = field(init=False)
    warmup_steps: int = field(init=False)

    @log_call
    def __post_init__(self) -> None:
        validate_config(self.cfg)
        sim = self.cfg.simulation
        self.units = TimeUnits(sim.interval)
        max_age = self.units.from_years_d(self.cfg.population.max_age_yrs)
        self.clock = SimClock(
            self.units,
            SimDate.parse(sim.start_date),
            SimDate.parse(sim.end_date),
            max_age,
        )
        warmup_years = sim.get("warmup_years")
        if warmup_years is None:
            warmup_years = self.cfg.population.max_age_yrs
        self.warmup_steps = self.units.in_steps(
            self.units.from_years_d(warmup_years)
        )

        self.rng = RandomStream(self.cfg.experiment.seed)
        self.surveys = Surveys(self.cfg.surveys.age_groups_upper)
        self.drugs = build_registry(self.cfg.health_system.get("drugs"))
        self.health_system = HealthSystem.from_config(
            self.cfg.health_system, self.drugs, self.units
        )
        self.population = Population(
            self.cfg.population.n_persons, max_age, self.units, self.rng
        )
        self.clinical = ClinicalModel.from_config(
            self.cfg.health_system.clinical, self.units.years_per_step
        )
        ctx = DeploymentContext(self.clock, self.rng, self.surveys,
                                self.health_system)
        self.interventions = InterventionManager(
            self.cfg.interventions, ctx, self.population.transmission,
            self.drugs,
        )

    @property
    def steps_done(self) -> int:
        return self.units.in_steps(self.clock.now())

    @property
    def in_intervention_period(self) -> bool:
        return self.clock.interv_time() >= SimTime.zero()

    def _begin_intervention_period(self) -> None:
        self.clock.begin_intervention_period()
        # surveys only cover the intervention period
        self.surveys = Surveys(self.cfg.surveys.age_groups_upper)
        self.interventions.ctx.surveys = self.surveys
        logger.info("intervention period starts after %d warm-up steps",
                    self.steps_done)

    def _finished(self) -> bool:
        return (self.in_intervention_period and
                self.clock.interv_time() >=
                self.clock.intervention_period_length())

    @log_call
    def step(self) -> None:
        """Advance the simulation by one time step."""
        self.interventions.deploy(self.population)

        self.clock.start_update()
        for human in self.population:
            self.clinical.update(human, self.clock, self.health_system,
                                 self.rng, self.surveys)
        self.population.update_demography(self.clock.ts1())
        self.clock.end_update()

        if self.in_intervention_period:
            interv_steps = self.units.in_steps(self.clock.interv_time())
            if interv_steps % self.cfg.surveys.interval_steps == 0:
                self.surveys.advance()
            frequency = self.cfg.simulation.checkpoint_frequency
            if frequency and interv_steps % frequency == 0:
                self.write_checkpoint(self.checkpoint_path())

    @log_call
    def run(self, max_steps: Optional[int] = None) -> Surveys:
        """
        Run until the end date, or for at most ``max_steps`` steps.

        Running again continues where the previous call stopped, so a run
        resumed from a checkpoint finishes the remaining steps only.

        Returns
        -------
        surveys : Surveys
            Counters of the intervention period
        """
        taken = 0
        while not self._finished():
            if max_steps is not None and taken >= max_steps:
                break
            if not self.in_intervention_period:
                if self.steps_done >= self.warmup_steps:
                    self._begin_intervention_period()
                    continue
            self.step()
            taken += 1
        if self._finished():
            logger.info(
                "simulation finished after %d steps; %d humans, %d draws",
                self.steps_done, self.population.size, self.rng.draws,
            )
        return self.surveys

    def checkpoint_path(self) -> Path:
        return Path(self.cfg.experiment.output_dir) / CHECKPOINT_NAME

    @log_call
    def write_checkpoint(self, path: Union[str, Path]) -> Path:
        """Write clock, random stream and population to ``path``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            writer = CheckpointWriter(f)
            self.clock.checkpoint_write(writer)
            writer.write_str(self.rng.get_state())
            writer.write_int(self.population.size)
            for human in self.population:
                write_human(writer, human)
        logger.info("wrote checkpoint %s at step %d", path, self.steps_done)
        return path

    @classmethod
    @log_call
    def resume(cls, cfg: DictConfig,
               path: Union[str, Path]) -> "TemporalEngine":
        """Rebuild an engine from ``cfg`` and restore the state in ``path``.

        Configuration changes deployed before the checkpoint are replayed;
        survey counters start afresh.
        """
        engine = cls(cfg)
        with open(path) as f:
            reader = CheckpointReader(f)
            engine.clock.checkpoint_read(reader)
            engine.rng.set_state(reader.read_str())
            humans = []
            for _ in range(reader.read_int()):
                human = Human(date_of_birth=SimTime.zero())
                read_human(reader, human)
                humans.append(human)
        engine.population.humans = humans
        if engine.in_intervention_period:
            engine.interventions.load_from_checkpoint(
                engine.population, engine.clock.interv_time()
            )
        return engine
