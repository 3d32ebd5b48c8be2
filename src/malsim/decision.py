"""
Case-management decision identifiers.

A decision identifier (``cmid``) is an unsigned 32-bit integer made of named
bitfields. Each field records the branch taken at one level of the
case-management tree. Three fields are reserved: the patient's morbidity and
age bracket (inputs to the tree) and the treatment-seeking delay in days.
Scenario-declared decision fields are packed above them in declaration
order.

All shifting and masking of identifiers happens in this module.
"""

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Dict, Iterable, List, Mapping, Tuple

from utils.logging import log_call

from .errors import ScenarioError

CMID_BITS = 32

MORBIDITY_FIELD = "morbidity"
AGE_FIELD = "age"
TS_DELAY_FIELD = "ts_delay"

TSDELAY_WIDTH = 3
TSDELAY_NUM_MAX = (1 << TSDELAY_WIDTH) - 1

UNDER5_AGE_YEARS = 5.0


class PathogenesisState(IntFlag):
    """Clinical state flags reported by the pathogenesis model."""

    NONE = 0
    SICK = 0x1
    MALARIA = 0x2
    COMPLICATED = 0x4
    SECOND_CASE = 0x10


class Morbidity(IntEnum):
    """Values of the ``morbidity`` input field."""

    NONE = 0
    UC1 = 1
    UC2 = 2
    SEVERE = 3


class AgeBracket(IntEnum):
    """Values of the ``age`` input field."""

    OVER5 = 0
    UNDER5 = 1


@dataclass(frozen=True)
class DecisionField:
    """One named bitfield of a decision identifier."""

    name: str
    shift: int
    width: int

    @property
    def mask(self) -> int:
        return ((1 << self.width) - 1) << self.shift

    @property
    def max_value(self) -> int:
        return (1 << self.width) - 1

    def encode(self, value: int) -> int:
        value = int(value)
        if not 0 <= value <= self.max_value:
            raise ScenarioError(
                f"value {value} does not fit decision field '{self.name}' "
                f"({self.width} bits, max {self.max_value})"
            )
        return value << self.shift

    def decode(self, cmid: int) -> int:
        return (cmid & self.mask) >> self.shift


_RESERVED = (
    DecisionField(MORBIDITY_FIELD, 0, 2),
    DecisionField(AGE_FIELD, 2, 1),
    DecisionField(TS_DELAY_FIELD, 3, TSDELAY_WIDTH),
)
_DELAY = _RESERVED[2]
INPUT_FIELDS = (MORBIDITY_FIELD, AGE_FIELD)


@log_call
def encode_delay(days: int) -> int:
    """Treatment-seeking delay bits for ``days`` days of delay."""
    return _DELAY.encode(days)


@log_call
def decode_delay(cmid: int) -> int:
    """Treatment-seeking delay in days stored in ``cmid``."""
    return _DELAY.decode(cmid)


@log_call
def morbidity_of(pg_state: int) -> Morbidity:
    """Map pathogenesis flags onto the ``morbidity`` input field."""
    state = PathogenesisState(pg_state)
    if state & PathogenesisState.COMPLICATED:
        return Morbidity.SEVERE
    if state & (PathogenesisState.MALARIA | PathogenesisState.SICK):
        if state & PathogenesisState.SECOND_CASE:
            return Morbidity.UC2
        return Morbidity.UC1
    return Morbidity.NONE


class DecisionLayout:
    """
    The bitfield layout of decision identifiers for one tree.

    Parameters
    ----------
    fields : iterable of (name, width)
        Scenario decision fields, packed above the reserved fields in the
        given order.
    """

    def __init__(self, fields: Iterable[Tuple[str, int]] = ()):
        self._fields: Dict[str, DecisionField] = {
            f.name: f for f in _RESERVED
        }
        shift = sum(f.width for f in _RESERVED)
        for name, width in fields:
            name = str(name)
            width = int(width)
            if name in self._fields:
                raise ScenarioError(
                    f"decision field '{name}' declared more than once"
                )
            if width < 1:
                raise ScenarioError(
                    f"decision field '{name}' must be at least 1 bit wide"
                )
            if shift + width > CMID_BITS:
                raise ScenarioError(
                    f"decision fields need more than {CMID_BITS} bits "
                    f"(field '{name}' ends at bit {shift + width})"
                )
            self._fields[name] = DecisionField(name, shift, width)
            shift += width
        self.total_width = shift

    @classmethod
    def from_config(cls, fields_cfg) -> "DecisionLayout":
        fields = []
        for entry in fields_cfg or ():
            if "name" not in entry or "width" not in entry:
                raise ScenarioError(
                    "decision field entries need 'name' and 'width'"
                )
            fields.append((entry["name"], entry["width"]))
        return cls(fields)

    @property
    def fields(self) -> List[DecisionField]:
        return list(self._fields.values())

    def field(self, name: str) -> DecisionField:
        try:
            return self._fields[name]
        except KeyError:
            raise ScenarioError(f"unknown decision field '{name}'") from None

    def field_value(self, name: str, value) -> int:
        """Resolve symbolic values of the input fields to integers."""
        if isinstance(value, str):
            if name == MORBIDITY_FIELD and value.upper() in Morbidity.__members__:
                return int(Morbidity[value.upper()])
            if name == AGE_FIELD and value.upper() in AgeBracket.__members__:
                return int(AgeBracket[value.upper()])
            raise ScenarioError(
                f"decision field '{name}' needs an integer value, "
                f"got {value!r}"
            )
        return int(value)

    def encode(self, values: Mapping[str, object]) -> Tuple[int, int]:
        """Encode a field->value mapping.

        Returns
        -------
        cmid, mask : tuple of int
            The identifier bits and the mask of every field named.
        """
        cmid = 0
        mask = 0
        for name, value in values.items():
            fld = self.field(str(name))
            cmid |= fld.encode(self.field_value(fld.name, value))
            mask |= fld.mask
        return cmid, mask

    def mask_of(self, names: Iterable[str]) -> int:
        mask = 0
        for name in names:
            mask |= self.field(name).mask
        return mask

    def fields_in(self, mask: int) -> List[DecisionField]:
        return [f for f in self._fields.values() if f.mask & mask]

    def decode(self, cmid: int) -> Dict[str, int]:
        return {name: f.decode(cmid) for name, f in self._fields.items()}

    def encode_input(self, pg_state: int, age_years: float) -> int:
        """Input-field bits for a patient."""
        age = AgeBracket.UNDER5 if age_years < UNDER5_AGE_YEARS else AgeBracket.OVER5
        return (
            self._fields[MORBIDITY_FIELD].encode(morbidity_of(pg_state))
            | self._fields[AGE_FIELD].encode(age)
        )

    def describe(self, cmid: int, mask: int = (1 << CMID_BITS) - 1) -> str:
        """Readable ``name=value`` listing of the fields covered by mask."""
        parts = [
            f"{f.name}={f.decode(cmid)}"
            for f in self._fields.values() if f.mask & mask
        ]
        return "{" + ", ".join(parts) + "}"


@log_call
def state_for_morbidity(morbidity: Morbidity) -> PathogenesisState:
    """Pathogenesis flags of a malaria case of the given morbidity."""
    if morbidity == Morbidity.SEVERE:
        return PathogenesisState.MALARIA | PathogenesisState.COMPLICATED
    if morbidity == Morbidity.UC2:
        return PathogenesisState.MALARIA | PathogenesisState.SECOND_CASE
    if morbidity == Morbidity.UC1:
        return PathogenesisState.MALARIA
    return PathogenesisState.NONE
