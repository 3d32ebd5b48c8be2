"""
The shared random stream.

One seeded stream feeds every stochastic decision in a run. The number and
order of draws is part of the reproducibility contract, so the stream keeps
a count of how many values it has produced.
"""

import json
from typing import Optional

import numpy as np

from utils.logging import log_call


class RandomStream:
    """
    Uniform [0, 1) draws from a PCG64 generator.

    Parameters
    ----------
    seed : int, optional
        Seed for the underlying bit generator

    Attributes
    ----------
    draws : int
        Number of values produced since construction or the last restore
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._generator = np.random.Generator(np.random.PCG64(seed))
        self.draws = 0

    def uniform_01(self) -> float:
        """Draw one value in [0, 1)."""
        self.draws += 1
        return float(self._generator.random())

    @log_call
    def get_state(self) -> str:
        """Serialise the bit generator state as JSON."""
        return json.dumps(self._generator.bit_generator.state)

    @log_call
    def set_state(self, state: str) -> None:
        self._generator.bit_generator.state = json.loads(state)
        self.draws = 0
