import os
import subprocess
import sys
from pathlib import Path
from itertools import product

import pytest
from omegaconf import OmegaConf

from config import load_config
from config.schemas import (
    ExperimentConfig,
    HealthSystemConfig,
    PopulationConfig,
    SimulationConfig,
    SurveysConfig,
)
from core.temporal_engine import TemporalEngine
from malsim.errors import ScenarioError
from utils.config import to_plain_config
from utils.validation import validate_config
from tests.fixtures.sample_configs import make_config, make_invalid_config


@pytest.mark.parametrize(
    "overrides",
    [
        [
            f"population={p}",
            f"simulation={s}",
            f"health_system={h}",
            f"interventions={i}",
        ]
        for p, s, h, i in product(
            ["small", "medium"],
            ["five_day", "one_day"],
            ["simple", "tiered"],
            ["none", "itn_campaign", "mixed"],
        )
    ],
)
def test_all_configs_load(overrides):
    cfg = load_config(overrides)
    assert cfg is not None


@pytest.mark.parametrize("group,schema", [
    ("population", PopulationConfig),
    ("simulation", SimulationConfig),
    ("health_system", HealthSystemConfig),
    ("surveys", SurveysConfig),
    ("experiment", ExperimentConfig),
])
def test_configs_match_schemas(group, schema):
    cfg = load_config(["health_system=tiered"])
    section = {k: v for k, v in to_plain_config(cfg[group]).items()
               if k in schema.__dataclass_fields__}
    merged = OmegaConf.merge(OmegaConf.structured(schema), section)
    assert not OmegaConf.missing_keys(merged)


@pytest.mark.parametrize("simulation", ["five_day", "one_day"])
@pytest.mark.parametrize("health_system", ["simple", "tiered"])
@pytest.mark.parametrize("interventions", ["none", "itn_campaign", "mixed"])
def test_all_scenarios_build(simulation, health_system, interventions):
    cfg = load_config([f"simulation={simulation}",
                       f"health_system={health_system}",
                       f"interventions={interventions}"])
    engine = TemporalEngine(cfg)
    assert engine.health_system.tree.n_reachable_leaves > 0


def test_validation_fails_on_invalid():
    cfg = make_invalid_config()
    with pytest.raises(ValueError):
        validate_config(cfg)


@pytest.mark.parametrize("section,values", [
    ("population", {"max_age_yrs": 0}),
    ("simulation", {"interval": 7}),
    ("simulation", {"end_date": "1999-01-01"}),
    ("simulation", {"start_date": "2000-02-30"}),
    ("simulation", {"warmup_years": -1}),
    ("simulation", {"checkpoint_frequency": -1}),
    ("surveys", {"interval_steps": 0}),
    ("surveys", {"age_groups_upper": [5, 1]}),
    ("surveys", {"age_groups_upper": []}),
    ("health_system", {"clinical": {"episode_rate": -1}}),
    ("health_system", {"clinical": {"severe_fraction": 1.5}}),
])
def test_validation_errors(section, values):
    cfg = make_config(**{section: values})
    with pytest.raises(ScenarioError):
        validate_config(cfg)


def test_to_plain_config():
    cfg = OmegaConf.create({"a": {"b": [1, 2]}, "c": "${a.b}"})
    assert to_plain_config(cfg) == {"a": {"b": [1, 2]}, "c": [1, 2]}
    assert to_plain_config({"x": 1}) == {"x": 1}


SRC_DIR = Path(__file__).resolve().parents[1] / "src"


@pytest.mark.parametrize("statement", [
    "from config import load_config",
    "from utils.validation import validate_config",
    "from core.temporal_engine import TemporalEngine",
    "import malsim",
])
def test_entry_points_import_in_fresh_process(statement):
    env = dict(os.environ, PYTHONPATH=os.pathsep.join(
        [str(SRC_DIR), os.environ.get("PYTHONPATH", "")]
    ))
    result = subprocess.run([sys.executable, "-c", statement], env=env,
                            capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
