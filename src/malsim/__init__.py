"""
Malaria case management and intervention scheduling.

Time model, case-management decision trees, medication queues and the
deployment of interventions over a simulated population.
"""

from .case_management import (
    CaseManagementTree,
    CaseTreatment,
    HealthSystem,
    MedicateData,
)
from .decision import DecisionLayout, Morbidity, PathogenesisState
from .drugs import DrugRegistry, DrugType, build_registry, default_registry
from .errors import ScenarioError, TreeInconsistencyError, UnimplementedError
from .random_stream import RandomStream
from .reporting import Surveys
from .scheduler import InterventionManager
from .sim_time import SimClock, SimDate, SimTime, TimeUnits

__version__ = "0.1.0"

__all__ = [
    "CaseManagementTree",
    "CaseTreatment",
    "DecisionLayout",
    "DrugRegistry",
    "DrugType",
    "HealthSystem",
    "InterventionManager",
    "MedicateData",
    "Morbidity",
    "PathogenesisState",
    "RandomStream",
    "ScenarioError",
    "SimClock",
    "SimDate",
    "SimTime",
    "Surveys",
    "TimeUnits",
    "TreeInconsistencyError",
    "UnimplementedError",
    "build_registry",
    "default_registry",
]
