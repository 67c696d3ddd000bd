"""Per-layer piecewise-linear interpolation on dual stereographic triangulations.

For every vertical layer the valid source nodes are triangulated twice (once
on each stereographic chart, see `regridll.projection`) and every destination
node is evaluated on the chart centered on its own hemisphere. Triangulations
are built and discarded per layer since the valid node set may change with
the layer (valid layer counts, missing values).

Workflow of `LayerInterpolator.interpolate_layer`:
1. Select candidate source nodes: valid layer count > k, finite value, not in
   an excluded first/last column.
2. Per chart, drop nodes with non-finite planar coordinates and all but the
   first node within `pole_tolerance` of the chart center.
3. Build a Delaunay triangulation per chart and interpolate linearly within
   the enclosing triangle.
4. Points outside the hull (or without a triangulation) take the value given
   by the vertical fill policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.interpolate import LinearNDInterpolator
from scipy.spatial import Delaunay, QhullError

from .constants import POLE_TOLERANCE
from .exceptions import ConfigurationError
from .fill import VerticalFill
from .grid import GridDescriptor
from .projection import DualProjection

logger = logging.getLogger(__name__)

# Chart name -> destination hemisphere it serves (see `DualProjection`).
CHARTS = ("south", "north")


@dataclass
class LayerStats:
    """Diagnostic counters of one interpolated layer.

    `empty_charts` only counts charts that were evaluated, i.e. that serve at
    least one active destination point; an unused chart is never triangulated.
    """

    layer: int
    n_in: int = 0
    n_out: int = 0
    n_filled: int = 0
    empty_charts: int = 0

    @property
    def is_empty(self) -> bool:
        """True if no source node was valid for this layer."""
        return self.n_in == 0

    def __str__(self):
        txt = f"k = {self.layer}: {self.n_in} in, {self.n_out} out"
        if self.n_filled > 0:
            txt += f" ({self.n_filled} filled)"
        return txt


def admissible_points(xy: np.ndarray, candidates: np.ndarray, tolerance: float = POLE_TOLERANCE) -> np.ndarray:
    """Select the candidate nodes usable for triangulating one chart.

    Parameters
    ----------
    xy : np.ndarray
        Planar coordinates on the chart, shape (n, 2).
    candidates : np.ndarray
        Boolean mask of nodes valid for the current layer.
    tolerance : float
        Radius around the chart center. Only the first node inside it is kept.

    Returns
    -------
    np.ndarray
        Boolean mask of admissible nodes.

    """
    mask = np.asarray(candidates, dtype=bool).copy()
    mask &= np.isfinite(xy).all(axis=1)

    near_center = np.flatnonzero(mask & (np.hypot(xy[:, 0], xy[:, 1]) < tolerance))
    if near_center.size > 1:
        mask[near_center[1:]] = False
    return mask


class HemisphereTriangulation:
    """Delaunay triangulation of valued nodes on one chart.

    Calling the instance evaluates the piecewise-linear interpolant; points
    outside the convex hull evaluate to NaN. A triangulation of fewer than
    three nodes, or of degenerate (e.g. collinear) nodes, covers nothing.
    """

    def __init__(self, points: np.ndarray, values: np.ndarray, name: str = ""):
        self.name = name
        self.npoints = len(points)
        self._interpolator = None

        if self.npoints < 3:
            logger.debug("Chart [%s]: %d node(s), nothing to triangulate", name, self.npoints)
            return
        try:
            triangulation = Delaunay(points)
        except QhullError as e:
            logger.debug("Chart [%s]: degenerate triangulation of %d nodes: %s", name, self.npoints, e)
            return
        self._interpolator = LinearNDInterpolator(triangulation, values, fill_value=np.nan)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.name!r}, npoints={self.npoints})"

    @property
    def covers_nothing(self) -> bool:
        return self._interpolator is None

    def __call__(self, xy: np.ndarray) -> np.ndarray:
        xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
        if self._interpolator is None:
            return np.full(xy.shape[0], np.nan)
        return np.asarray(self._interpolator(xy), dtype=np.float64).reshape(-1)


class LayerInterpolator:
    """Interpolates source layers onto the destination grid.

    Parameters
    ----------
    src, dst : GridDescriptor
        Source and destination grids. Their valid layer counts (if any)
        restrict source candidates and evaluated destination points.
    src_proj, dst_proj : DualProjection
        Projections of the source and destination nodes.
    skip_first_last : bool, optional
        Exclude source nodes in the first and last column (seam duplicates).
    pole_tolerance : float, optional
        Radius of the near-center duplicate rule.

    """

    def __init__(
        self,
        src: GridDescriptor,
        src_proj: DualProjection,
        dst: GridDescriptor,
        dst_proj: DualProjection,
        skip_first_last: bool = False,
        pole_tolerance: float = POLE_TOLERANCE,
    ):
        if src_proj.size != src.size or dst_proj.size != dst.size:
            raise ConfigurationError("Projections do not match their grids.")
        self.src = src
        self.dst = dst
        self.src_proj = src_proj
        self.dst_proj = dst_proj
        self.pole_tolerance = pole_tolerance

        self._usable = np.ones(src.size, dtype=bool)
        if skip_first_last:
            cols = src.column(np.arange(src.size))
            self._usable &= (cols != 0) & (cols != src.ni - 1)
            logger.debug("Excluding %d source nodes in first/last columns", src.size - self._usable.sum())

        northern = dst_proj.northern
        self._dst_index = {"south": np.flatnonzero(northern), "north": np.flatnonzero(~northern)}

    def source_candidates(self, values: np.ndarray, k: int = None) -> np.ndarray:
        """Boolean mask of source nodes valid for layer `k` (no layer filtering if None)."""
        mask = self._usable & np.isfinite(values)
        if k is not None and self.src.valid_count is not None:
            mask &= self.src.valid_count > k
        return mask

    def destination_active(self, k: int = None) -> np.ndarray:
        """Boolean mask of destination points evaluated for layer `k`."""
        if k is None or self.dst.valid_count is None:
            return np.ones(self.dst.size, dtype=bool)
        return self.dst.valid_count > k

    def evaluate(self, values: np.ndarray, candidates: np.ndarray, active: np.ndarray) -> tuple[np.ndarray, int]:
        """Interpolate `values` of the candidate nodes at the active destination points.

        Returns
        -------
        out : np.ndarray
            Interpolated values, NaN where not covered or not active.
        empty_charts : int
            Number of evaluated charts whose triangulation covered nothing.
            Charts without active destination points are skipped and not
            counted.

        """
        out = np.full(self.dst.size, np.nan)
        empty_charts = 0
        for chart in CHARTS:
            dst_index = self._dst_index[chart]
            dst_index = dst_index[active[dst_index]]
            if dst_index.size == 0:
                continue

            src_xy = self.src_proj.chart(chart)
            keep = admissible_points(src_xy, candidates, self.pole_tolerance)
            triangulation = HemisphereTriangulation(src_xy[keep], values[keep], name=chart)
            if triangulation.covers_nothing:
                empty_charts += 1
            out[dst_index] = triangulation(self.dst_proj.chart(chart)[dst_index])
            del triangulation
        return out, empty_charts

    def interpolate_layer(self, k: int, values: np.ndarray, fill: VerticalFill) -> tuple[np.ndarray, LayerStats]:
        """Interpolate source layer `k` and apply the fill policy.

        Parameters
        ----------
        k : int
            Layer index.
        values : np.ndarray
            Source layer values (flat or in grid shape).
        fill : VerticalFill
            Fill policy (and carry-down state) of the run.

        Returns
        -------
        out : np.ndarray
            Flat destination layer.
        stats : LayerStats
            Diagnostic counters.

        """
        values = np.asarray(values, dtype=np.float64).ravel()
        if values.size != self.src.size:
            raise ConfigurationError(f"Layer {k} has {values.size} values, source grid has {self.src.size} nodes")

        candidates = self.source_candidates(values, k)
        active = self.destination_active(k)
        raw, empty_charts = self.evaluate(values, candidates, active)

        covered = active & np.isfinite(raw)
        uncovered = active & ~covered

        out = np.full(self.dst.size, fill.base_value)
        out[covered] = raw[covered]
        fill.record(covered, raw)
        out[uncovered] = fill.replacement(uncovered)

        stats = LayerStats(
            layer=k,
            n_in=int(np.count_nonzero(candidates)),
            n_out=int(np.count_nonzero(active)),
            n_filled=int(np.count_nonzero(uncovered)),
            empty_charts=empty_charts,
        )
        return out, stats
