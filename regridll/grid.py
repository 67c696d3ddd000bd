"""Horizontal grid descriptors and their classification.

A grid is one of three closed topologies:

- Curvilinear: 2D longitude/latitude arrays, shape (nj, ni).
- Rectangular: 1D longitude (ni) and latitude (nj) axes, expanded to a full
  (nj, ni) set of nodes.
- Unstructured: 1D longitude/latitude arrays of equal length (scattered
  points), `nj` is 0.

Nodes are always stored flat, in row-major [j][i] order for structured grids.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum, unique

import numpy as np

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@unique
class GridType(Enum):
    CURVILINEAR = "curvilinear"
    RECTANGULAR = "rectangular"
    UNSTRUCTURED = "unstructured"

    @property
    def is_structured(self) -> bool:
        return self is not GridType.UNSTRUCTURED


@dataclass(frozen=True, eq=False)
class GridDescriptor:
    """Horizontal grid: topology, extents, flat node coordinates (degrees).

    Parameters
    ----------
    gtype : GridType
        Grid topology.
    ni, nj : int
        Horizontal extents. `nj` is 0 for unstructured grids.
    lon, lat : np.ndarray
        Flat node coordinates of length `ni * nj` (or `ni` if unstructured).
    valid_count : np.ndarray, optional
        Per-column number of valid layers (data valid in layers 0..count-1).
    dims : tuple of str, optional
        Names of the horizontal dimensions ((j, i) or (i,)), when known.

    """

    gtype: GridType
    ni: int
    nj: int
    lon: np.ndarray = dataclasses.field(repr=False)
    lat: np.ndarray = dataclasses.field(repr=False)
    valid_count: np.ndarray | None = dataclasses.field(default=None, repr=False)
    dims: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        lon = np.array(self.lon, dtype=np.float64).ravel()
        lat = np.array(self.lat, dtype=np.float64).ravel()
        lon.flags.writeable = False
        lat.flags.writeable = False
        object.__setattr__(self, "lon", lon)
        object.__setattr__(self, "lat", lat)

        if self.ni <= 0:
            raise ConfigurationError(f"Grid must have a positive `ni`, got: {self.ni}")
        if self.gtype.is_structured and self.nj <= 0:
            raise ConfigurationError(f"Structured grid must have a positive `nj`, got: {self.nj}")
        if not self.gtype.is_structured and self.nj != 0:
            raise ConfigurationError(f"Unstructured grid must have `nj` = 0, got: {self.nj}")
        if lon.size != self.size or lat.size != self.size:
            raise ConfigurationError(
                f"Expected {self.size} grid nodes, got lon={lon.size}, lat={lat.size}"
            )
        if self.valid_count is not None:
            counts = np.asarray(self.valid_count)
            if counts.size != self.size:
                raise ConfigurationError(
                    f"Valid layer count size ({counts.size}) does not match grid size ({self.size})"
                )
            counts = counts.astype(np.int64).ravel()
            counts.flags.writeable = False
            object.__setattr__(self, "valid_count", counts)

    @property
    def size(self) -> int:
        """Number of horizontal nodes."""
        return self.ni * self.nj if self.gtype.is_structured else self.ni

    @property
    def shape(self) -> tuple[int, ...]:
        """Horizontal shape: (nj, ni) or (ni,)."""
        return (self.nj, self.ni) if self.gtype.is_structured else (self.ni,)

    @property
    def has_valid_count(self) -> bool:
        return self.valid_count is not None

    def index(self, j: int, i: int) -> int:
        """Flat node index of structured node (j, i)."""
        if not self.gtype.is_structured:
            raise ConfigurationError("Unstructured grids have no (j, i) indexing.")
        if not (0 <= j < self.nj and 0 <= i < self.ni):
            raise IndexError(f"Node ({j}, {i}) outside grid of shape {self.shape}")
        return j * self.ni + i

    def column(self, flat_index: np.ndarray | int):
        """Column (i) index of flat node indices."""
        return np.asarray(flat_index) % self.ni

    @classmethod
    def curvilinear(cls, lon: np.ndarray, lat: np.ndarray, dims=None) -> GridDescriptor:
        """Grid from 2D coordinate arrays of matching shape (nj, ni)."""
        lon = np.asarray(lon, dtype=np.float64)
        lat = np.asarray(lat, dtype=np.float64)
        if lon.ndim != 2 or lon.shape != lat.shape:
            raise ConfigurationError(
                f"Curvilinear grid requires 2D coordinates of equal shape, got: {lon.shape}, {lat.shape}"
            )
        nj, ni = lon.shape
        return cls(GridType.CURVILINEAR, ni, nj, lon, lat, dims=_as_dims(dims))

    @classmethod
    def rectangular(cls, lon: np.ndarray, lat: np.ndarray, dims=None) -> GridDescriptor:
        """Grid from 1D longitude (ni) and latitude (nj) axes (outer-product expansion)."""
        lon = np.asarray(lon, dtype=np.float64)
        lat = np.asarray(lat, dtype=np.float64)
        if lon.ndim != 1 or lat.ndim != 1:
            raise ConfigurationError(
                f"Rectangular grid requires 1D coordinate axes, got: {lon.shape}, {lat.shape}"
            )
        lon2d, lat2d = np.meshgrid(lon, lat)
        return cls(GridType.RECTANGULAR, lon.size, lat.size, lon2d, lat2d, dims=_as_dims(dims))

    @classmethod
    def unstructured(cls, lon: np.ndarray, lat: np.ndarray, dims=None) -> GridDescriptor:
        """Grid from 1D scattered node coordinates of equal length."""
        lon = np.asarray(lon, dtype=np.float64)
        lat = np.asarray(lat, dtype=np.float64)
        if lon.ndim != 1 or lon.shape != lat.shape:
            raise ConfigurationError(
                f"Unstructured grid requires 1D coordinates of equal length, got: {lon.shape}, {lat.shape}"
            )
        return cls(GridType.UNSTRUCTURED, lon.size, 0, lon, lat, dims=_as_dims(dims))

    def with_valid_count(self, counts: np.ndarray, nk: int, binary_mask: bool = True) -> GridDescriptor:
        """Attach a per-column valid layer count.

        The array must have the grid's horizontal shape. Unless `binary_mask` is
        False, a purely binary (0/1) array is a land mask: every 1 is replaced
        with `nk` (fully valid column).

        Raises
        ------
        ConfigurationError
            If the shape does not match or counts fall outside [0, nk].

        """
        counts = np.asarray(counts)
        if counts.shape != self.shape:
            raise ConfigurationError(
                f"Valid layer count shape {counts.shape} does not match grid shape {self.shape}"
            )
        counts = np.rint(counts).astype(np.int64)
        if binary_mask and counts.size and np.isin(counts, (0, 1)).all():
            logger.debug("Binary valid layer mask, treating 1 as all %d layers valid", nk)
            counts = np.where(counts == 1, nk, 0)
        if counts.size and (counts.min() < 0 or counts.max() > nk):
            raise ConfigurationError(
                f"Valid layer counts must be within [0, {nk}], got [{counts.min()}, {counts.max()}]"
            )
        return dataclasses.replace(self, valid_count=counts)


def _as_dims(dims):
    return None if dims is None else tuple(str(dim) for dim in dims)


def classify_grid(lon: np.ndarray, lat: np.ndarray, field_shape: tuple[int, ...], dims=None) -> GridDescriptor:
    """Classify a source grid against the shape of the field being regridded.

    Parameters
    ----------
    lon, lat : np.ndarray
        Coordinate arrays read from the grid file.
    field_shape : tuple of int
        Full shape of the field variable (horizontal dims last).
    dims : tuple of str, optional
        Horizontal dimension names to record on the descriptor.

    Returns
    -------
    GridDescriptor

    Raises
    ------
    ConfigurationError
        If the coordinate dimensions do not match the field dimensions.

    """
    lon = np.asarray(lon)
    lat = np.asarray(lat)
    field_shape = tuple(int(n) for n in field_shape)

    if lon.ndim == 2 and lat.ndim == 2:
        if len(field_shape) >= 2 and lon.shape == lat.shape == field_shape[-2:]:
            return GridDescriptor.curvilinear(lon, lat, dims=dims)
    elif lon.ndim == 1 and lat.ndim == 1 and field_shape:
        if len(field_shape) >= 2 and lon.size == field_shape[-1] and lat.size == field_shape[-2]:
            return GridDescriptor.rectangular(lon, lat, dims=dims)
        if lon.size == lat.size == field_shape[-1]:
            return GridDescriptor.unstructured(lon, lat, dims=dims)

    raise ConfigurationError(
        f"Coordinate dimensions do not match field dimensions: lon={lon.shape}, lat={lat.shape}, field={field_shape}"
    )


def classify_destination_grid(
    lon: np.ndarray,
    lat: np.ndarray,
    lon_dims: tuple[str, ...] = None,
    lat_dims: tuple[str, ...] = None,
    source_type: GridType = None,
) -> GridDescriptor:
    """Classify a destination grid (no field is available to match against).

    2D coordinates are curvilinear. 1D coordinates sharing a single dimension
    are unstructured, 1D coordinates on distinct dimensions rectangular. An
    unstructured source requires an unstructured destination.

    Raises
    ------
    ConfigurationError
        If the coordinates cannot describe a grid compatible with the source.

    """
    lon = np.asarray(lon)
    lat = np.asarray(lat)

    if lon.ndim == 2 and lat.ndim == 2:
        if source_type is GridType.UNSTRUCTURED:
            raise ConfigurationError("Source grid is unstructured; destination grid is not (2D coordinates).")
        return GridDescriptor.curvilinear(lon, lat, dims=lon_dims)

    if lon.ndim != 1 or lat.ndim != 1:
        raise ConfigurationError(f"Unsupported destination coordinate shapes: lon={lon.shape}, lat={lat.shape}")

    shared = lon_dims is not None and lat_dims is not None and tuple(lon_dims) == tuple(lat_dims)
    if source_type is GridType.UNSTRUCTURED or shared:
        if lon.size != lat.size:
            raise ConfigurationError(
                "Source grid is unstructured; destination grid is not "
                f"(coordinates of different length: {lon.size} != {lat.size})"
            )
        return GridDescriptor.unstructured(lon, lat, dims=lon_dims)

    dims = None
    if lon_dims is not None and lat_dims is not None:
        dims = (*lat_dims, *lon_dims)
    return GridDescriptor.rectangular(lon, lat, dims=dims)
