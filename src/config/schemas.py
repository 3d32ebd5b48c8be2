from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PopulationConfig:
    n_persons: int
    max_age_yrs: float = 90.0


@dataclass
class SimulationConfig:
    interval: int                   # days per step: 1 or 5
    start_date: str                 # YYYY-MM-DD, start of interventions
    end_date: str
    warmup_years: Optional[float] = None   # defaults to max_age_yrs
    checkpoint_frequency: int = 0   # steps; 0 disables


@dataclass
class ClinicalConfig:
    episode_rate: float             # episodes per person-year
    severe_fraction: float = 0.0


@dataclass
class HealthSystemConfig:
    clinical: ClinicalConfig
    case_management: Dict[str, Any]
    memory_days: int = 0
    drugs: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SurveysConfig:
    interval_steps: int
    age_groups_upper: List[float] = field(
        default_factory=lambda: [1.0, 5.0, 15.0, 100.0]
    )


@dataclass
class ExperimentConfig:
    name: str
    seed: int
    output_dir: str
