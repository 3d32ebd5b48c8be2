from omegaconf import DictConfig

from malsim.errors import ScenarioError
from malsim.sim_time import SimDate, TimeUnits
from utils.logging import log_call


@log_call
def validate_config(cfg: DictConfig) -> None:
    """Scenario-level checks run before any model component is built."""

    if cfg.population.n_persons <= 0:
        raise ScenarioError("n_persons must be positive")
    if cfg.population.max_age_yrs <= 0:
        raise ScenarioError("max_age_yrs must be positive")
    TimeUnits(cfg.simulation.interval)
    start = SimDate.parse(cfg.simulation.start_date)
    end = SimDate.parse(cfg.simulation.end_date)
    if end <= start:
        raise ScenarioError("end_date must be after start_date")
    warmup = cfg.simulation.get("warmup_years")
    if warmup is not None and warmup < 0:
        raise ScenarioError("warmup_years must not be negative")
    if cfg.simulation.checkpoint_frequency < 0:
        raise ScenarioError("checkpoint_frequency must not be negative")
    if cfg.surveys.interval_steps <= 0:
        raise ScenarioError("surveys.interval_steps must be positive")
    bounds = list(cfg.surveys.age_groups_upper)
    if not bounds or any(b <= a for a, b in zip(bounds, bounds[1:])):
        raise ScenarioError(
            "surveys.age_groups_upper must be a non-empty increasing list"
        )
    clinical = cfg.health_system.clinical
    if clinical.episode_rate < 0:
        raise ScenarioError("episode_rate must not be negative")
    if not 0.0 <= clinical.severe_fraction <= 1.0:
        raise ScenarioError("severe_fraction must be in range [0,1]")
