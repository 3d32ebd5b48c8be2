"""
Survey counters.

Counts are accumulated per survey, measure, reporting age group and cohort
membership, and exported as a pandas DataFrame.
"""

from bisect import bisect_right
from collections import Counter
from typing import Iterable, Tuple

import pandas as pd

from utils.logging import log_call

from .decision import Morbidity

MEASURES = (
    "episodes",
    "treatments_uc1",
    "treatments_uc2",
    "treatments_severe",
    "mda",
    "itn",
    "irs",
    "vector_deterrent",
    "vaccine",
    "ipt",
    "cohort",
    "imported_infections",
    "immune_suppression",
)

_TREATMENT_MEASURES = {
    Morbidity.UC1: "treatments_uc1",
    Morbidity.UC2: "treatments_uc2",
    Morbidity.SEVERE: "treatments_severe",
}


class Surveys:
    """
    Counters grouped into consecutive surveys.

    Parameters
    ----------
    age_groups_upper : iterable of float
        Upper bounds (exclusive, in years) of the reporting age groups; ages
        above the last bound fall into the last group.
    """

    def __init__(self, age_groups_upper: Iterable[float] = (1, 5, 15, 100)):
        self.age_groups_upper = [float(a) for a in age_groups_upper]
        self.current = 0
        self._counts: Counter = Counter()

    def age_group(self, age_years: float) -> int:
        group = bisect_right(self.age_groups_upper, age_years)
        return min(group, len(self.age_groups_upper) - 1)

    def report(self, measure: str, age_group: int, cohort: bool,
               n: int = 1) -> None:
        if measure not in MEASURES:
            raise KeyError(f"unknown survey measure '{measure}'")
        self._counts[(self.current, measure, age_group, bool(cohort))] += n

    def report_treatment(self, morbidity: Morbidity, age_group: int,
                         cohort: bool) -> None:
        measure = _TREATMENT_MEASURES.get(Morbidity(morbidity))
        if measure is not None:
            self.report(measure, age_group, cohort)

    def total(self, measure: str) -> int:
        return sum(n for (_, m, _, _), n in self._counts.items()
                   if m == measure)

    def advance(self) -> None:
        """Close the current survey and start the next."""
        self.current += 1

    def keys(self) -> Iterable[Tuple[int, str, int, bool]]:
        return self._counts.keys()

    @log_call
    def to_frame(self) -> pd.DataFrame:
        """All non-zero counts as a long-format table."""
        rows = [
            {"survey": s, "measure": m, "age_group": g, "cohort": c,
             "value": n}
            for (s, m, g, c), n in sorted(self._counts.items())
        ]
        return pd.DataFrame(
            rows, columns=["survey", "measure", "age_group", "cohort", "value"]
        )
