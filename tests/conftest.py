"""
Shared test fixtures.

Small clocks, populations and trees used across the test modules.
"""

import os
import sys

import pytest

# Add src and the repository root to path for imports
ROOT = os.path.join(os.path.dirname(__file__), '..')
sys.path.insert(0, os.path.join(ROOT, 'src'))
sys.path.insert(0, ROOT)

from malsim.drugs import default_registry  # noqa: E402
from malsim.interventions import DeploymentContext  # noqa: E402
from malsim.random_stream import RandomStream  # noqa: E402
from malsim.reporting import Surveys  # noqa: E402
from malsim.sim_time import SimClock, SimDate, SimTime, TimeUnits  # noqa: E402


@pytest.fixture
def units5():
    return TimeUnits(5)


@pytest.fixture
def units1():
    return TimeUnits(1)


@pytest.fixture
def clock5(units5):
    """Five-day clock with a three-year intervention period."""
    return SimClock(
        units5,
        SimDate.from_ymd(2000, 1, 1),
        SimDate.from_ymd(2003, 1, 1),
        SimTime.from_years_i(90),
    )


@pytest.fixture
def drugs():
    return default_registry()


@pytest.fixture
def surveys():
    return Surveys([1, 5, 15, 100])


@pytest.fixture
def ctx(clock5, surveys):
    return DeploymentContext(clock5, RandomStream(7), surveys)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: full scenario runs (deselect with "
        "-m 'not integration')"
    )
