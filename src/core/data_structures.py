from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from malsim.case_management import MedicateData
from malsim.random_stream import RandomStream
from malsim.sim_time import SimTime, TimeUnits
from utils.logging import log_call


@dataclass
class Human:
    """One simulated person, as seen by case management and deployment."""

    date_of_birth: SimTime
    in_cohort: bool = False
    next_cts_dist: int = 0
    itn_deployed: SimTime = field(default_factory=SimTime.never)
    irs_deployed: SimTime = field(default_factory=SimTime.never)
    va_deployed: SimTime = field(default_factory=SimTime.never)
    vaccine_doses: int = 0
    last_vaccine: SimTime = field(default_factory=SimTime.never)
    ipt_doses: int = 0
    mda_count: int = 0
    immune_suppressed: int = 0
    r0_vaccinated: bool = False
    infections: int = 0
    last_episode: SimTime = field(default_factory=SimTime.never)
    doses_taken: int = 0
    medicate_queue: List[MedicateData] = field(default_factory=list)

    def age(self, now: SimTime) -> SimTime:
        return now - self.date_of_birth

    def incr_next_cts_dist(self) -> int:
        self.next_cts_dist += 1
        return self.next_cts_dist

    # -----  deployment callbacks  -----

    def deploy_itn(self, now: SimTime) -> None:
        self.itn_deployed = now

    def deploy_irs(self, now: SimTime) -> None:
        self.irs_deployed = now

    def deploy_va(self, now: SimTime) -> None:
        self.va_deployed = now

    def add_to_cohort(self) -> None:
        self.in_cohort = True

    def deploy_vaccine(self, now: SimTime) -> None:
        self.vaccine_doses += 1
        self.last_vaccine = now

    def deploy_ipt(self) -> None:
        self.ipt_doses += 1

    def mass_drug_administration(self, cleared: bool) -> None:
        self.mda_count += 1
        if cleared:
            self.infections = 0

    def immune_suppression(self) -> None:
        self.immune_suppressed += 1

    def r0_vaccines(self) -> None:
        self.r0_vaccinated = True

    def add_infection(self) -> None:
        self.infections += 1

    # -----  protection predicates  -----

    def has_itn_protection(self, now: SimTime, max_age: SimTime) -> bool:
        return now - self.itn_deployed < max_age

    def has_irs_protection(self, now: SimTime, max_age: SimTime) -> bool:
        return now - self.irs_deployed < max_age

    def has_va_protection(self, now: SimTime, max_age: SimTime) -> bool:
        return now - self.va_deployed < max_age

    def process_medications(self, elapsed_days: int) -> int:
        """Take queued medications whose seeking delay has passed.

        Returns the number of doses taken.
        """
        taken = 0
        remaining = []
        for med in self.medicate_queue:
            if med.seeking_delay <= 0:
                taken += 1
            else:
                remaining.append(MedicateData(
                    med.abbrev, med.qty, med.time,
                    max(0, med.seeking_delay - elapsed_days)
                ))
        self.medicate_queue = remaining
        self.doses_taken += taken
        return taken


class TransmissionModel:
    """Records the transmission-side effects of interventions."""

    def __init__(self):
        self.eir: Optional[Dict[str, Any]] = None
        self.itn_description: Optional[Dict[str, Any]] = None
        self.irs_description: Optional[Dict[str, Any]] = None
        self.va_description: Optional[Dict[str, Any]] = None
        self.vector_interventions: Dict[int, Dict[str, Any]] = {}
        self.vector_deployments: List[int] = []
        self.eir_changes = 0
        self.uninfect_count = 0

    def set_itn_description(self, description) -> None:
        self.itn_description = description

    def set_irs_description(self, description) -> None:
        self.irs_description = description

    def set_va_description(self, description) -> None:
        self.va_description = description

    def init_vector_interv(self, description, instance: int) -> None:
        self.vector_interventions[instance] = description

    def change_eir(self, eir) -> None:
        self.eir = eir
        self.eir_changes += 1

    def uninfect_vectors(self) -> None:
        self.uninfect_count += 1

    def deploy_vector_pop_interv(self, instance: int) -> None:
        if instance not in self.vector_interventions:
            raise KeyError(f"no vector intervention instance {instance}")
        self.vector_deployments.append(instance)


@dataclass
class Population:
    """
    Ordered collection of humans.

    Iteration order is stable within and across steps. Initial ages are
    drawn uniformly up to the maximum age, one draw per person, rounded
    down to whole steps.
    """

    n_persons: int
    max_age: SimTime
    units: TimeUnits
    rng: RandomStream
    humans: List[Human] = field(init=False)
    transmission: TransmissionModel = field(default_factory=TransmissionModel)

    @log_call
    def __post_init__(self) -> None:
        max_steps = self.units.in_steps(self.max_age)
        self.humans = []
        for _ in range(self.n_persons):
            age_steps = int(self.rng.uniform_01() * max_steps)
            self.humans.append(Human(date_of_birth=-self.units.from_ts(age_steps)))

    @property
    def size(self) -> int:
        return len(self.humans)

    def __len__(self) -> int:
        return len(self.humans)

    def __iter__(self) -> Iterator[Human]:
        return iter(self.humans)

    def __getitem__(self, index: int) -> Human:
        return self.humans[index]

    @log_call
    def update_demography(self, ts1: SimTime) -> int:
        """Replace humans past the maximum age with newborns.

        Newborns are born at ``ts1`` and appended at the end, keeping the
        population size constant. Returns the number replaced.
        """
        survivors = [h for h in self.humans if h.age(ts1) <= self.max_age]
        n_born = len(self.humans) - len(survivors)
        survivors.extend(Human(date_of_birth=ts1) for _ in range(n_born))
        self.humans = survivors
        return n_born
