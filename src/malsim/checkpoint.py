"""
Checkpoint streams.

A checkpoint is a flat sequence of primitive values, one per line, written
and read back in the same fixed order. Version compatibility is the
caller's concern.
"""

from typing import IO, List

from utils.logging import log_call

from .case_management import MedicateData
from .sim_time import SimTime


class CheckpointWriter:
    def __init__(self, stream: IO[str]):
        self.stream = stream

    def _line(self, text: str) -> None:
        if "\n" in text:
            raise ValueError("checkpoint values cannot contain newlines")
        self.stream.write(text + "\n")

    def write_int(self, value: int) -> None:
        self._line(str(int(value)))

    def write_float(self, value: float) -> None:
        self._line(repr(float(value)))

    def write_bool(self, value: bool) -> None:
        self._line("1" if value else "0")

    def write_str(self, value: str) -> None:
        self._line(str(value))

    def write_time(self, value: SimTime) -> None:
        self.write_int(value.in_days())


class CheckpointReader:
    def __init__(self, stream: IO[str]):
        self.stream = stream

    def _line(self) -> str:
        line = self.stream.readline()
        if not line:
            raise EOFError("checkpoint ended early")
        return line.rstrip("\n")

    def read_int(self) -> int:
        return int(self._line())

    def read_float(self) -> float:
        return float(self._line())

    def read_bool(self) -> bool:
        value = self._line()
        if value not in ("0", "1"):
            raise ValueError(f"expected boolean in checkpoint, got {value!r}")
        return value == "1"

    def read_str(self) -> str:
        return self._line()

    def read_time(self) -> SimTime:
        return SimTime(self.read_int())


@log_call
def write_human(writer: CheckpointWriter, human) -> None:
    """Write a human's fields in the order ``read_human`` expects."""
    writer.write_time(human.date_of_birth)
    writer.write_bool(human.in_cohort)
    writer.write_int(human.next_cts_dist)
    writer.write_time(human.itn_deployed)
    writer.write_time(human.irs_deployed)
    writer.write_time(human.va_deployed)
    writer.write_int(human.vaccine_doses)
    writer.write_time(human.last_vaccine)
    writer.write_int(human.ipt_doses)
    writer.write_int(human.mda_count)
    writer.write_int(human.immune_suppressed)
    writer.write_bool(human.r0_vaccinated)
    writer.write_int(human.infections)
    writer.write_time(human.last_episode)
    writer.write_int(human.doses_taken)
    writer.write_int(len(human.medicate_queue))
    for med in human.medicate_queue:
        writer.write_str(med.abbrev)
        writer.write_float(med.qty)
        writer.write_int(med.time)
        writer.write_int(med.seeking_delay)


@log_call
def read_human(reader: CheckpointReader, human) -> None:
    """Restore the fields written by ``write_human`` into ``human``."""
    human.date_of_birth = reader.read_time()
    human.in_cohort = reader.read_bool()
    human.next_cts_dist = reader.read_int()
    human.itn_deployed = reader.read_time()
    human.irs_deployed = reader.read_time()
    human.va_deployed = reader.read_time()
    human.vaccine_doses = reader.read_int()
    human.last_vaccine = reader.read_time()
    human.ipt_doses = reader.read_int()
    human.mda_count = reader.read_int()
    human.immune_suppressed = reader.read_int()
    human.r0_vaccinated = reader.read_bool()
    human.infections = reader.read_int()
    human.last_episode = reader.read_time()
    human.doses_taken = reader.read_int()
    queue: List[MedicateData] = []
    for _ in range(reader.read_int()):
        queue.append(MedicateData(
            abbrev=reader.read_str(),
            qty=reader.read_float(),
            time=reader.read_int(),
            seeking_delay=reader.read_int(),
        ))
    human.medicate_queue = queue
