"""Dual stereographic projection of geographic nodes.

Each node is mapped to the unit sphere and projected twice onto the
equatorial plane:

- `south`: projection from the south pole (the latitude is reflected through
  the equator before applying ``(X / (1 - Z), Y / (1 - Z))``). It is singular
  at the south pole and centered on the north pole, so it is the chart used
  for destination nodes with latitude >= 0.
- `north`: projection from the north pole, singular there and centered on the
  south pole; used for destination nodes with latitude < 0.

Neither chart is ever evaluated near its own singular pole: each destination
node is located on the chart centered on its own hemisphere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .constants import DEG2RAD
from .grid import GridDescriptor

logger = logging.getLogger(__name__)


def ll2xyz(lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    """Convert geographic coordinates (degrees) to unit-sphere cartesian vectors.

    Parameters
    ----------
    lon, lat : np.ndarray
        Longitude and latitude in degrees.

    Returns
    -------
    np.ndarray
        Array of shape (..., 3): ``(sin(lon)cos(lat), cos(lon)cos(lat), sin(lat))``.

    """
    lon = np.asarray(lon, dtype=np.float64) * DEG2RAD
    lat = np.asarray(lat, dtype=np.float64) * DEG2RAD
    coslat = np.cos(lat)
    return np.stack([np.sin(lon) * coslat, np.cos(lon) * coslat, np.sin(lat)], axis=-1)


def stereographic(lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    """Stereographic projection from the north pole, shape (..., 2).

    The north pole itself maps to infinity (non-finite coordinates).
    """
    xyz = ll2xyz(lon, lat)
    with np.errstate(divide="ignore", invalid="ignore"):
        denom = 1.0 - xyz[..., 2]
        return np.stack([xyz[..., 0] / denom, xyz[..., 1] / denom], axis=-1)


@dataclass(frozen=True, eq=False)
class DualProjection:
    """Pair of planar projections (south, north) for every node of a grid.

    Attributes
    ----------
    south, north : np.ndarray
        Planar coordinates, shape (n, 2).
    lat : np.ndarray
        Node latitudes (degrees), used to select a node's chart.

    """

    south: np.ndarray
    north: np.ndarray
    lat: np.ndarray

    @property
    def size(self) -> int:
        return self.lat.size

    @property
    def northern(self) -> np.ndarray:
        """Boolean mask of nodes evaluated on the south-projection chart (lat >= 0)."""
        return self.lat >= 0.0

    def chart(self, hemisphere: str) -> np.ndarray:
        """Planar coordinates of the chart named `hemisphere` ("south" or "north")."""
        if hemisphere == "south":
            return self.south
        if hemisphere == "north":
            return self.north
        raise ValueError(f"Unknown projection [{hemisphere}], expected 'south' or 'north'")


def project_points(lon: np.ndarray, lat: np.ndarray) -> DualProjection:
    """Project flat lon/lat arrays onto both stereographic charts."""
    lon = np.asarray(lon, dtype=np.float64).ravel()
    lat = np.asarray(lat, dtype=np.float64).ravel()
    return DualProjection(south=stereographic(lon, -lat), north=stereographic(lon, lat), lat=lat)


def project_grid(grid: GridDescriptor) -> DualProjection:
    """Project every node of `grid`; computed once per grid, not per layer."""
    proj = project_points(grid.lon, grid.lat)
    n_bad = int((~np.isfinite(proj.south).all(axis=1)).sum() + (~np.isfinite(proj.north).all(axis=1)).sum())
    logger.debug("Projected %d %s nodes (%d singular chart positions)", proj.size, grid.gtype.value, n_bad)
    return proj
