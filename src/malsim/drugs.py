"""Registry of drugs that case management may prescribe."""

from dataclasses import dataclass
from typing import Dict, Iterator

from utils.logging import log_call

from .errors import ScenarioError

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class DrugType:
    """Static description of one drug.

    ``half_life`` is in minutes.
    """

    name: str
    abbreviation: str
    absorption_factor: float
    half_life: float


class DrugRegistry:
    """Drugs keyed by abbreviation."""

    def __init__(self):
        self._available: Dict[str, DrugType] = {}

    def add(self, drug: DrugType) -> None:
        if drug.abbreviation in self._available:
            raise ScenarioError(
                f"Drug already in registry: {drug.abbreviation}"
            )
        self._available[drug.abbreviation] = drug

    def get(self, abbreviation: str) -> DrugType:
        try:
            return self._available[abbreviation]
        except KeyError:
            raise ScenarioError(
                f"prescribed non-existent drug {abbreviation}"
            ) from None

    def __contains__(self, abbreviation: str) -> bool:
        return abbreviation in self._available

    def __iter__(self) -> Iterator[DrugType]:
        return iter(self._available.values())

    def __len__(self) -> int:
        return len(self._available)


@log_call
def default_registry() -> DrugRegistry:
    """Registry holding the built-in drugs (Chloroquine)."""
    registry = DrugRegistry()
    # Based on Hoshen
    registry.add(DrugType("Chloroquine", "CQ", 0.02, 45 * MINUTES_PER_DAY))
    return registry


@log_call
def build_registry(drugs_cfg) -> DrugRegistry:
    """Default registry extended with the drugs listed in a scenario."""
    registry = default_registry()
    for entry in drugs_cfg or ():
        try:
            drug = DrugType(
                name=str(entry["name"]),
                abbreviation=str(entry["abbrev"]),
                absorption_factor=float(entry["absorption_factor"]),
                half_life=float(entry["half_life"]),
            )
        except KeyError as exc:
            raise ScenarioError(f"drug entry missing {exc}") from None
        if drug.half_life <= 0:
            raise ScenarioError(
                f"drug {drug.abbreviation} must have a positive half life"
            )
        registry.add(drug)
    return registry
