"""Reading and writing of gridded fields.

The regridding pipeline only talks to a `DataStore`; `NetCDFStore` is the
netCDF implementation. Source files are read lazily with xarray (one layer
at a time) and the destination file is written with netCDF4, so that the
source variable's on-disk encoding (dtype, packing, fill value) is
reproduced exactly. Compression is set by the caller.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import netCDF4
import numpy as np
import xarray as xr

from .constants import NETCDF_FORMAT
from .exceptions import ConfigurationError, DataStoreError
from .grid import GridDescriptor
from .utils import file_rename, remove_quietly

logger = logging.getLogger(__name__)

# Encoding keys xarray moves out of `attrs` that must be written back.
_PACKING_ATTRS = ("scale_factor", "add_offset", "missing_value")


@dataclass(frozen=True)
class FieldInfo:
    """Raw description of a stored variable."""

    name: str
    dims: tuple[str, ...]
    shape: tuple[int, ...]
    unlimited: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldLayout:
    """Dimension layout of a field: [record,] [vertical,] horizontal...

    Attributes
    ----------
    dims, shape : tuple
        Dimension names and lengths.
    n_horizontal : int
        Number of trailing horizontal dimensions (1 or 2).
    record_axis, vertical_axis : int or None
        Axes of the record and vertical dimensions, if present.
    unlimited : tuple of str
        Names of unlimited dimensions.

    """

    dims: tuple[str, ...]
    shape: tuple[int, ...]
    n_horizontal: int
    record_axis: int | None = None
    vertical_axis: int | None = None
    unlimited: tuple[str, ...] = ()

    @classmethod
    def build(cls, info: FieldInfo, n_horizontal: int) -> FieldLayout:
        """Assign roles to the leading dimensions of a field.

        With two leading dimensions the first is a record dimension and the
        second the vertical one. A single leading dimension is a record
        dimension if it is unlimited, otherwise it is the vertical dimension.

        Raises
        ------
        ConfigurationError
            If the field has too many or too few dimensions, or a record
            dimension that is empty or holds more than one record.

        """
        dims, shape = tuple(info.dims), tuple(int(n) for n in info.shape)
        leading = len(dims) - n_horizontal
        if leading < 0 or leading > 2:
            raise ConfigurationError(
                f'Variable "{info.name}" has {len(dims)} dimension(s) {dims}, expected '
                f"{n_horizontal} horizontal dimension(s) and at most 2 leading ones"
            )

        record_axis = vertical_axis = None
        if leading == 2:
            record_axis, vertical_axis = 0, 1
        elif leading == 1:
            if dims[0] in info.unlimited:
                record_axis = 0
            else:
                vertical_axis = 0

        if record_axis is not None:
            if shape[record_axis] == 0:
                raise ConfigurationError(f'Variable "{info.name}": record dimension "{dims[record_axis]}" is empty')
            if shape[record_axis] > 1:
                raise ConfigurationError(
                    f'Variable "{info.name}": can not handle more than one record '
                    f'("{dims[record_axis]}" has length {shape[record_axis]})'
                )
        return cls(dims, shape, n_horizontal, record_axis, vertical_axis, tuple(info.unlimited))

    @property
    def nk(self) -> int:
        """Number of layers (1 if there is no vertical dimension)."""
        return 1 if self.vertical_axis is None else self.shape[self.vertical_axis]

    @property
    def horizontal_dims(self) -> tuple[str, ...]:
        return self.dims[-self.n_horizontal :]

    @property
    def horizontal_shape(self) -> tuple[int, ...]:
        return self.shape[-self.n_horizontal :]

    @property
    def horizontal_size(self) -> int:
        return int(np.prod(self.horizontal_shape))

    def layer_selection(self, k: int) -> dict[str, Any]:
        """Index of layer `k` by dimension name (for `xarray.DataArray.isel`)."""
        selection = {}
        if self.record_axis is not None:
            selection[self.dims[self.record_axis]] = self.shape[self.record_axis] - 1
        if self.vertical_axis is not None:
            selection[self.dims[self.vertical_axis]] = k if self.nk > 1 else 0
        return selection

    def layer_key(self, k: int) -> tuple:
        """Positional index of layer `k` (for netCDF4 variables)."""
        selection = self.layer_selection(k)
        return tuple(selection.get(dim, slice(None)) for dim in self.dims)

    def is_record(self, axis: int) -> bool:
        return axis == self.record_axis

    def for_grid(self, grid: GridDescriptor) -> FieldLayout:
        """Layout of the regridded field on `grid`.

        Leading dimensions are kept (with a single record). Horizontal
        dimension names are kept if the number of horizontal dimensions is
        unchanged, otherwise they are taken from the destination grid.
        """
        n_horizontal = len(grid.shape)
        leading = len(self.dims) - self.n_horizontal
        if n_horizontal == self.n_horizontal:
            hdims = self.horizontal_dims
        elif grid.dims is not None and len(grid.dims) == n_horizontal:
            hdims = grid.dims
        else:
            hdims = ("nj", "ni")[-n_horizontal:]

        lead_dims = self.dims[:leading]
        overlap = set(lead_dims) & set(hdims)
        if overlap or len(set(hdims)) != len(hdims):
            raise ConfigurationError(f"Destination dimension names collide: {lead_dims} + {hdims}")

        lead_shape = tuple(1 if self.is_record(axis) else n for axis, n in enumerate(self.shape[:leading]))
        return dataclasses.replace(
            self, dims=lead_dims + tuple(hdims), shape=lead_shape + tuple(grid.shape), n_horizontal=n_horizontal
        )


class DataStore(Protocol):
    """
    Protocol for the storage backend of the regridding pipeline.

    Handles returned by `open_grid` and `create_destination` are opaque to
    the pipeline; they are only passed back to the same store. Reading must
    be possible one layer at a time.
    """

    def open_grid(self, path: str | Path) -> Any: ...

    def close(self, handle: Any) -> None: ...

    def read_coordinates(self, handle: Any, name: str) -> xr.DataArray: ...

    def read_integer_field(self, handle: Any, name: str) -> np.ndarray: ...

    def describe_field(self, handle: Any, varname: str) -> FieldInfo: ...

    def read_layer(self, handle: Any, varname: str, k: int, layout: FieldLayout) -> np.ndarray: ...

    def create_destination(
        self,
        path: str | Path,
        src_handle: Any,
        varname: str,
        layout: FieldLayout,
        deflate: int = 0,
        attrs: dict = None,
    ) -> Any: ...

    def write_layer(self, handle: Any, varname: str, k: int, layout: FieldLayout, values: np.ndarray) -> None: ...

    def commit(self, tmp_path: str | Path, final_path: str | Path) -> None: ...

    def discard(self, tmp_path: str | Path) -> None: ...


def _attr(var, name, default=None):
    """Attribute of an xarray or netCDF4 variable, including xarray's encoding."""
    if isinstance(var, xr.DataArray):
        return var.attrs.get(name, var.encoding.get(name, default))
    return getattr(var, name, default)


def valid_bounds(var) -> tuple[float, float]:
    """Valid range of a variable in physical (unpacked) units.

    Combines `valid_min`, `valid_max` and `valid_range`; they are stored in
    packed units and converted with `scale_factor` and `add_offset`.
    """
    lower, upper = -np.inf, np.inf
    valid_range = _attr(var, "valid_range")
    if valid_range is not None:
        vrange = np.asarray(valid_range, dtype=np.float64).ravel()
        if vrange.size >= 2:
            lower, upper = max(lower, vrange[0]), min(upper, vrange[1])
    valid_min = _attr(var, "valid_min")
    if valid_min is not None:
        lower = max(lower, float(np.asarray(valid_min).ravel()[0]))
    valid_max = _attr(var, "valid_max")
    if valid_max is not None:
        upper = min(upper, float(np.asarray(valid_max).ravel()[0]))

    scale = float(np.asarray(_attr(var, "scale_factor", 1.0)).ravel()[0])
    offset = float(np.asarray(_attr(var, "add_offset", 0.0)).ravel()[0])
    lower, upper = lower * scale + offset, upper * scale + offset
    if scale < 0:
        lower, upper = upper, lower
    return lower, upper


class NetCDFStore:
    """`DataStore` for netCDF files (xarray for reading, netCDF4 for writing)."""

    def open_grid(self, path: str | Path) -> xr.Dataset:
        logger.debug("Opening [%s]", path)
        try:
            return xr.open_dataset(path, decode_times=False)
        except (OSError, ValueError) as e:
            raise DataStoreError(f'Unable to open "{path}": {e}') from e

    def close(self, handle) -> None:
        if handle is not None:
            handle.close()

    @staticmethod
    def _variable(handle: xr.Dataset, name: str) -> xr.DataArray:
        if name not in handle.variables:
            source = handle.encoding.get("source", "<dataset>")
            raise DataStoreError(f'Variable "{name}" not found in "{source}"')
        return handle[name]

    def read_coordinates(self, handle: xr.Dataset, name: str) -> xr.DataArray:
        var = self._variable(handle, name)
        try:
            return var.load().astype(np.float64)
        except (OSError, RuntimeError) as e:
            raise DataStoreError(f'Unable to read "{name}": {e}') from e

    def read_integer_field(self, handle: xr.Dataset, name: str) -> np.ndarray:
        """Read an integer field; missing values read as 0."""
        values = self.read_coordinates(handle, name).values
        return np.rint(np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0)).astype(np.int64)

    def describe_field(self, handle: xr.Dataset, varname: str) -> FieldInfo:
        var = self._variable(handle, varname)
        unlimited = tuple(handle.encoding.get("unlimited_dims", ()))
        return FieldInfo(varname, tuple(str(dim) for dim in var.dims), tuple(var.shape), unlimited)

    def read_layer(self, handle: xr.Dataset, varname: str, k: int, layout: FieldLayout) -> np.ndarray:
        """Read layer `k` as flat float64; values outside the valid range are NaN."""
        var = self._variable(handle, varname)
        try:
            data = var.isel(layout.layer_selection(k)).values.astype(np.float64)
        except (OSError, RuntimeError) as e:
            raise DataStoreError(f'Unable to read layer {k} of "{varname}": {e}') from e

        lower, upper = valid_bounds(var)
        with np.errstate(invalid="ignore"):
            data[(data < lower) | (data > upper)] = np.nan
        return data.ravel()

    def create_destination(
        self,
        path: str | Path,
        src_handle: xr.Dataset,
        varname: str,
        layout: FieldLayout,
        deflate: int = 0,
        attrs: dict = None,
    ) -> netCDF4.Dataset:
        """Create the destination file with the source variable's encoding and attributes.

        Parameters
        ----------
        path : str or Path
            File to create (overwritten if it exists).
        src_handle : xr.Dataset
            Source dataset, for global and variable attributes.
        varname : str
            Variable to create.
        layout : FieldLayout
            Destination layout. Its record dimension is created unlimited.
        deflate : int, optional
            Deflate level, 0 (no compression) to 9.
        attrs : dict, optional
            Extra global attributes (e.g. provenance).

        Returns
        -------
        netCDF4.Dataset

        """
        src_var = self._variable(src_handle, varname)
        encoding = src_var.encoding
        dtype = np.dtype(encoding.get("dtype", src_var.dtype))
        fill_value = encoding.get("_FillValue", None)

        try:
            ds = netCDF4.Dataset(str(path), "w", format=NETCDF_FORMAT)
        except OSError as e:
            raise DataStoreError(f'Unable to create "{path}": {e}') from e

        try:
            global_attrs = dict(src_handle.attrs)
            global_attrs.update(attrs or {})
            ds.setncatts(global_attrs)

            for axis, (dim, size) in enumerate(zip(layout.dims, layout.shape)):
                ds.createDimension(dim, None if layout.is_record(axis) else size)

            var = ds.createVariable(
                varname,
                dtype,
                layout.dims,
                zlib=deflate > 0,
                complevel=deflate if deflate > 0 else 4,
                fill_value=fill_value,
            )
            var_attrs = {key: value for key, value in src_var.attrs.items() if key != "_FillValue"}
            for key in _PACKING_ATTRS:
                if key in encoding and key not in var_attrs:
                    var_attrs[key] = encoding[key]
            var.setncatts(var_attrs)
        except (OSError, RuntimeError, TypeError, ValueError) as e:
            ds.close()
            raise DataStoreError(f'Unable to define "{varname}" in "{path}": {e}') from e

        logger.debug("Created [%s]: %s%s %s", path, varname, layout.dims, dtype)
        return ds

    def write_layer(
        self, handle: netCDF4.Dataset, varname: str, k: int, layout: FieldLayout, values: np.ndarray
    ) -> None:
        """Write layer `k`; values are clamped to the valid range, NaN is written as missing."""
        var = handle.variables[varname]
        data = np.asarray(values, dtype=np.float64).reshape(layout.horizontal_shape)

        lower, upper = valid_bounds(var)
        with np.errstate(invalid="ignore"):
            data = np.clip(data, lower, upper)
        if np.issubdtype(var.dtype, np.integer) and not hasattr(var, "scale_factor"):
            data = np.rint(data)

        try:
            var[layout.layer_key(k)] = np.ma.masked_invalid(data)
        except (OSError, RuntimeError) as e:
            raise DataStoreError(f'Unable to write layer {k} of "{varname}": {e}') from e

    def commit(self, tmp_path: str | Path, final_path: str | Path) -> None:
        file_rename(tmp_path, final_path)

    def discard(self, tmp_path: str | Path) -> None:
        if remove_quietly(tmp_path):
            logger.info("Discarded incomplete output [%s]", tmp_path)
