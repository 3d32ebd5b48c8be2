"""Core simulation modules."""

from .data_structures import Human, Population, TransmissionModel
from .temporal_engine import TemporalEngine

__all__ = ["Human", "Population", "TransmissionModel", "TemporalEngine"]
