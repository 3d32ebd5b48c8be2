"""
Simulation time model.

Times are whole days. ``SimTime`` is a duration, or a time measured from the
start of the simulation; ``SimDate`` is a date in a 365-day calendar counted
from 0000-01-01. Step-based conversions depend on the step length of the
scenario and live on ``TimeUnits``. ``SimClock`` owns the mutable clock of one
simulation run and enforces which accessors are valid inside and outside a
population update.
"""

import math
from typing import Tuple

from utils.logging import log_call

from .errors import ScenarioError

DAYS_IN_YEAR = 365

_NEVER_DAYS = -0x3FFFFFFF
_FUTURE_DAYS = 0x3FFFFFFF

# Cumulative day-of-year at the start of each month (no leap years)
_MONTH_STARTS = (0, 31, 59, 90, 120, 151, 181, 212, 243, 273, 304, 334, 365)


@log_call
def mod_nn(numerator: int, denominator: int) -> int:
    """Modulus whose result is never negative, for a positive denominator."""
    if denominator <= 0:
        raise ValueError("mod_nn requires a positive denominator")
    result = numerator % denominator
    if result < 0:
        result += denominator
    return result


class SimTime:
    """A duration, or a time relative to the start of the simulation, in days.

    The default value is ``never()``. Arithmetic stays well inside the
    integer range for any time reachable in a bounded simulation, including
    the two sentinels.
    """

    __slots__ = ("d",)

    def __init__(self, days: int = _NEVER_DAYS):
        self.d = int(days)

    @staticmethod
    def zero() -> "SimTime":
        return SimTime(0)

    @staticmethod
    def never() -> "SimTime":
        """A time always in the past: ``never() + x < zero()`` for valid x."""
        return SimTime(_NEVER_DAYS)

    @staticmethod
    def future() -> "SimTime":
        """A time always in the future: ``now() < future()``."""
        return SimTime(_FUTURE_DAYS)

    @staticmethod
    def one_day() -> "SimTime":
        return SimTime(1)

    @staticmethod
    def one_year() -> "SimTime":
        return SimTime(DAYS_IN_YEAR)

    @staticmethod
    def from_days(days: int) -> "SimTime":
        return SimTime(days)

    @staticmethod
    def from_years_i(years: int) -> "SimTime":
        """Convert from a whole number of years (exact)."""
        return SimTime(DAYS_IN_YEAR * int(years))

    def in_days(self) -> int:
        return self.d

    def in_years(self) -> float:
        return self.d * (1.0 / DAYS_IN_YEAR)

    def _check(self, other: object) -> "SimTime":
        if not isinstance(other, SimTime):
            raise TypeError(
                f"expected SimTime, got {type(other).__name__}"
            )
        return other

    def __neg__(self) -> "SimTime":
        return SimTime(-self.d)

    def __add__(self, other: "SimTime") -> "SimTime":
        return SimTime(self.d + self._check(other).d)

    def __sub__(self, other: "SimTime") -> "SimTime":
        return SimTime(self.d - self._check(other).d)

    def __mul__(self, scalar) -> "SimTime":
        if isinstance(scalar, bool):
            raise TypeError("cannot scale a SimTime by a bool")
        if isinstance(scalar, int):
            return SimTime(self.d * scalar)
        if isinstance(scalar, float):
            # scale by a double, rounding half up
            return SimTime(math.floor(self.d * scalar + 0.5))
        return NotImplemented

    __rmul__ = __mul__

    def __floordiv__(self, other: "SimTime") -> int:
        return self.d // self._check(other).d

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimTime):
            return NotImplemented
        return self.d == other.d

    def __ne__(self, other: object) -> bool:
        if not isinstance(other, SimTime):
            return NotImplemented
        return self.d != other.d

    def __lt__(self, other: "SimTime") -> bool:
        return self.d < self._check(other).d

    def __le__(self, other: "SimTime") -> bool:
        return self.d <= self._check(other).d

    def __gt__(self, other: "SimTime") -> bool:
        return self.d > self._check(other).d

    def __ge__(self, other: "SimTime") -> bool:
        return self.d >= self._check(other).d

    def __hash__(self) -> int:
        return hash(("SimTime", self.d))

    def __repr__(self) -> str:
        if self.d == _NEVER_DAYS:
            return "SimTime.never()"
        if self.d == _FUTURE_DAYS:
            return "SimTime.future()"
        return f"SimTime({self.d}d)"


class SimDate:
    """A calendar date, in days since 0000-01-01 (365-day years)."""

    __slots__ = ("d",)

    def __init__(self, days: int = _NEVER_DAYS):
        self.d = int(days)

    @staticmethod
    def origin() -> "SimDate":
        return SimDate(0)

    @staticmethod
    def never() -> "SimDate":
        return SimDate(_NEVER_DAYS)

    @staticmethod
    def future() -> "SimDate":
        return SimDate(_FUTURE_DAYS)

    @staticmethod
    def from_ymd(year: int, month: int, day: int) -> "SimDate":
        if not 1 <= month <= 12:
            raise ScenarioError(f"invalid month {month}")
        month_len = _MONTH_STARTS[month] - _MONTH_STARTS[month - 1]
        if not 1 <= day <= month_len:
            raise ScenarioError(f"invalid day {day} for month {month}")
        return SimDate(
            year * DAYS_IN_YEAR + _MONTH_STARTS[month - 1] + day - 1
        )

    @staticmethod
    def parse(text: str) -> "SimDate":
        """Parse a ``YYYY-MM-DD`` date; leap days do not exist."""
        parts = str(text).strip().split("-")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ScenarioError(
                f"expected date in YYYY-MM-DD format, got {text!r}"
            )
        year, month, day = (int(p) for p in parts)
        return SimDate.from_ymd(year, month, day)

    def ymd(self) -> Tuple[int, int, int]:
        year, day_of_year = divmod(self.d, DAYS_IN_YEAR)
        month = 1
        while _MONTH_STARTS[month] <= day_of_year:
            month += 1
        return year, month, day_of_year - _MONTH_STARTS[month - 1] + 1

    def __add__(self, other: SimTime) -> "SimDate":
        if not isinstance(other, SimTime):
            return NotImplemented
        return SimDate(self.d + other.d)

    def __sub__(self, other):
        if isinstance(other, SimDate):
            return SimTime(self.d - other.d)
        if isinstance(other, SimTime):
            return SimDate(self.d - other.d)
        return NotImplemented

    def _check(self, other: object) -> "SimDate":
        if not isinstance(other, SimDate):
            raise TypeError(
                f"expected SimDate, got {type(other).__name__}"
            )
        return other

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimDate):
            return NotImplemented
        return self.d == other.d

    def __ne__(self, other: object) -> bool:
        if not isinstance(other, SimDate):
            return NotImplemented
        return self.d != other.d

    def __lt__(self, other: "SimDate") -> bool:
        return self.d < self._check(other).d

    def __le__(self, other: "SimDate") -> bool:
        return self.d <= self._check(other).d

    def __gt__(self, other: "SimDate") -> bool:
        return self.d > self._check(other).d

    def __ge__(self, other: "SimDate") -> bool:
        return self.d >= self._check(other).d

    def __hash__(self) -> int:
        return hash(("SimDate", self.d))

    def __str__(self) -> str:
        year, month, day = self.ymd()
        return f"{year:04d}-{month:02d}-{day:02d}"

    def __repr__(self) -> str:
        return f"SimDate({self})"


class TimeUnits:
    """
    Step-based conversions for a fixed time-step length.

    Parameters
    ----------
    interval : int
        Days per time step; 1 or 5.

    Notes
    -----
    ``from_years_n`` rounds to the nearest step while ``from_years_d``
    floors to the last completed step. Call sites pick one deliberately.
    Step counts of negative times floor towards minus infinity, so
    ``in_steps`` of -1 day is -1 rather than 0; ``modulo_steps`` and
    ``modulo_year_steps`` build on the same floored count.
    """

    VALID_INTERVALS = (1, 5)

    def __init__(self, interval: int):
        if interval not in self.VALID_INTERVALS:
            raise ScenarioError(
                f"time step must be one of {self.VALID_INTERVALS} days, "
                f"got {interval}"
            )
        self.interval = int(interval)
        self.steps_per_year = DAYS_IN_YEAR // self.interval
        self.years_per_step = 1.0 / self.steps_per_year

    def one_ts(self) -> SimTime:
        return SimTime(self.interval)

    def from_ts(self, steps: int) -> SimTime:
        return SimTime(self.interval * int(steps))

    def from_days(self, days: int) -> SimTime:
        return SimTime(days)

    def from_years_i(self, years: int) -> SimTime:
        return SimTime.from_years_i(years)

    def from_years_n(self, years: float) -> SimTime:
        """Convert from years to the nearest time step."""
        return self.round_to_ts_from_days(DAYS_IN_YEAR * years)

    def from_years_d(self, years: float) -> SimTime:
        """Convert from years, rounding down to a whole time step."""
        return self.from_ts(math.floor(self.steps_per_year * years))

    def round_to_ts_from_days(self, days: float) -> SimTime:
        return self.from_ts(math.floor(days / self.interval + 0.5))

    def in_steps(self, t: SimTime) -> int:
        """Length of ``t`` in whole time steps (rounding down)."""
        return t.d // self.interval

    def modulo_steps(self, t: SimTime, denominator: int) -> int:
        return mod_nn(t.d // self.interval, denominator)

    def modulo_year_steps(self, t: SimTime) -> int:
        return mod_nn(t.d // self.interval, self.steps_per_year)

    def __repr__(self) -> str:
        return f"TimeUnits(interval={self.interval})"


class SimClock:
    """
    The clock of one simulation run.

    ``ts0``/``ts1`` bracket the step being updated and may only be read
    inside an update; ``now`` is the time between updates and may only be
    read outside one. Reading the wrong one is a programming error.

    Parameters
    ----------
    units : TimeUnits
        Step length conversions
    start_date : SimDate
        Date at which the intervention period starts
    end_date : SimDate
        Date at which the simulation ends
    max_human_age : SimTime
        Age at which humans leave the population
    """

    def __init__(
        self,
        units: TimeUnits,
        start_date: SimDate = SimDate.origin(),
        end_date: SimDate = SimDate.future(),
        max_human_age: SimTime = SimTime.from_years_i(90)
    ):
        if end_date < start_date:
            raise ScenarioError("simulation end date precedes start date")
        self.units = units
        self.start_date = start_date
        self.end_date = end_date
        self.max_human_age = max_human_age
        self.in_update = False
        self._t0 = SimTime.zero()
        self._t1 = SimTime.zero()
        self._interv = SimTime.never()

    def one_ts(self) -> SimTime:
        return self.units.one_ts()

    def start_update(self) -> None:
        assert not self.in_update, "start_update called during an update"
        self._t1 = self._t1 + self.units.one_ts()
        self.in_update = True

    def end_update(self) -> None:
        assert self.in_update, "end_update called outside an update"
        self.in_update = False
        self._t0 = self._t1
        self._interv = self._interv + self.units.one_ts()

    def begin_intervention_period(self) -> None:
        """Start counting intervention time from zero."""
        assert not self.in_update
        self._interv = SimTime.zero()

    def ts0(self) -> SimTime:
        """Time at the start of the step being updated."""
        assert self.in_update, "ts0() is only valid during updates"
        return self._t0

    def ts1(self) -> SimTime:
        """Time at the end of the step being updated."""
        assert self.in_update, "ts1() is only valid during updates"
        return self._t1

    def now(self) -> SimTime:
        """Time between updates, for deployment and monitoring."""
        assert not self.in_update, "now() is not valid during updates"
        return self._t0

    def now_or_ts0(self) -> SimTime:
        return self._t0

    def now_or_ts1(self) -> SimTime:
        return self._t1

    def latest_ts0(self) -> SimTime:
        return self._t1 - self.units.one_ts()

    def interv_time(self) -> SimTime:
        """Time since the start of the intervention period.

        Hugely negative during warm-up.
        """
        return self._interv

    def interv_date(self) -> SimDate:
        return self.start_date + self._interv

    def intervention_period_length(self) -> SimTime:
        return self.end_date - self.start_date

    @log_call
    def checkpoint_write(self, writer) -> None:
        writer.write_int(self._t0.d)
        writer.write_int(self._t1.d)
        writer.write_int(self._interv.d)

    @log_call
    def checkpoint_read(self, reader) -> None:
        assert not self.in_update
        self._t0 = SimTime(reader.read_int())
        self._t1 = SimTime(reader.read_int())
        self._interv = SimTime(reader.read_int())
