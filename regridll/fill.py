"""Vertical fill policy for destination points not covered by a triangulation."""

from __future__ import annotations

import logging
from enum import Enum, unique

import numpy as np

logger = logging.getLogger(__name__)


@unique
class FillPolicy(Enum):
    ZERO = "zero"
    NAN = "nan"
    PROPAGATE_DOWN = "propagate_down"


class VerticalFill:
    """Replacement values for uncovered destination points, with carry-down state.

    Parameters
    ----------
    policy : FillPolicy or str
        ZERO replaces with 0, NAN with missing (NaN), PROPAGATE_DOWN with the
        last finite value the same point received on a shallower layer (or
        missing if there is none).
    npoints : int
        Number of destination points.
    nk : int
        Number of layers. Carry-down state is only kept when `nk` > 1,
        otherwise PROPAGATE_DOWN behaves as NAN.

    """

    def __init__(self, policy: FillPolicy | str, npoints: int, nk: int):
        self.policy = FillPolicy(policy)
        self.npoints = int(npoints)
        self.carry = None
        if self.policy is FillPolicy.PROPAGATE_DOWN and nk > 1:
            self.carry = np.full(self.npoints, np.nan)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.policy.name}, npoints={self.npoints}, carry={self.carry is not None})"

    @property
    def base_value(self) -> float:
        """Value of points with nothing better: 0 for ZERO, otherwise missing."""
        return 0.0 if self.policy is FillPolicy.ZERO else np.nan

    def record(self, covered: np.ndarray, values: np.ndarray) -> None:
        """Remember finite results of the current layer for the points in `covered`."""
        if self.carry is None:
            return
        self.carry[covered] = values[covered]

    def replacement(self, uncovered: np.ndarray) -> np.ndarray:
        """Replacement values for the points selected by the boolean mask `uncovered`."""
        if self.carry is not None:
            return self.carry[uncovered].copy()
        return np.full(int(np.count_nonzero(uncovered)), self.base_value)
