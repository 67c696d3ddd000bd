"""Regridding pipeline: configuration, run context and the layer loop.

States of a run::

    INIT -> LOAD_SOURCE_GRID -> LOAD_DEST_GRID -> PROJECT -> [MASK_TRANSFER]
         -> PER_LAYER (k = 0..nk-1) -> FINALIZE -> DONE

Any failure moves the run to FAILED. The destination is written to a
temporary file next to the final path and only renamed onto it after every
layer has been written, so a failed run never leaves a partial file under the
destination name.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum, unique
from pathlib import Path

from .constants import MAX_DEFLATE_LEVEL, POLE_TOLERANCE, PROGRAM_NAME, TMP_SUFFIX
from .dataio import DataStore, FieldLayout, NetCDFStore
from .exceptions import ConfigurationError
from .fill import FillPolicy, VerticalFill
from .grid import GridDescriptor, classify_destination_grid, classify_grid
from .interpolate import LayerInterpolator, LayerStats
from .mask import transfer_valid_layer_count
from .projection import DualProjection, project_grid
from .utils import format_performance, get_command, track_performance

logger = logging.getLogger(__name__)


@unique
class PipelineState(Enum):
    INIT = "init"
    LOAD_SOURCE_GRID = "load_source_grid"
    LOAD_DEST_GRID = "load_dest_grid"
    PROJECT = "project"
    MASK_TRANSFER = "mask_transfer"
    PER_LAYER = "per_layer"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"


@dataclass
class GridSpec:
    """Location of a grid: file, coordinate variables and optional valid layer count."""

    path: str | Path
    lon_name: str
    lat_name: str
    count_name: str | None = None

    def __post_init__(self) -> None:
        if not self.lon_name or not self.lat_name:
            raise ConfigurationError(f"Grid [{self.path}] requires longitude and latitude variable names.")
        if self.count_name == "":
            self.count_name = None


@dataclass
class RegridConfig:
    """Options of a single regridding run.

    Parameters
    ----------
    src_path, dst_path : str or Path
        Source data file and destination file.
    varname : str
        Variable to regrid.
    src_grid, dst_grid : GridSpec
        Source and destination grids.
    fill_policy : FillPolicy, optional
        Value of destination points not covered by a triangulation.
    skip_first_last : bool, optional
        Exclude the first and last source columns.
    transfer_mask : bool, optional
        Interpolate the source valid layer count onto the destination grid.
    deflate : int, optional
        Output deflate level (0 to 9).
    pole_tolerance : float, optional
        Radius of the near-pole duplicate rule (planar units).
    command : str, optional
        Command line recorded in the output. Default is `sys.argv`.

    """

    src_path: str | Path
    dst_path: str | Path
    varname: str
    src_grid: GridSpec
    dst_grid: GridSpec
    fill_policy: FillPolicy = FillPolicy.ZERO
    skip_first_last: bool = False
    transfer_mask: bool = False
    deflate: int = 0
    pole_tolerance: float = POLE_TOLERANCE
    command: str | None = None

    def __post_init__(self) -> None:
        self.fill_policy = FillPolicy(self.fill_policy)
        if not self.varname:
            raise ConfigurationError("A variable name is required.")
        if not 0 <= self.deflate <= MAX_DEFLATE_LEVEL:
            raise ConfigurationError(f"Deflate level must be within [0, {MAX_DEFLATE_LEVEL}], got: {self.deflate}")
        if not self.pole_tolerance > 0:
            raise ConfigurationError(f"Pole tolerance must be positive, got: {self.pole_tolerance}")
        if self.transfer_mask:
            if self.dst_grid.count_name is not None:
                raise ConfigurationError("Cannot both specify destination mask and request mask transfer.")
            if self.src_grid.count_name is None:
                raise ConfigurationError("Mask transfer requires a source valid layer count variable.")
        if Path(self.src_path).resolve() == Path(self.dst_path).resolve():
            raise ConfigurationError(f"Destination [{self.dst_path}] would overwrite the source file.")

    @property
    def tmp_path(self) -> Path:
        """Temporary destination, renamed onto `dst_path` on success."""
        return Path(f"{self.dst_path}{TMP_SUFFIX}")


@dataclass
class RunContext:
    """Run-scoped state and diagnostic counters.

    `empty_hemispheres` sums the per-layer empty charts, which only include
    hemispheres holding active destination points.
    """

    state: PipelineState = PipelineState.INIT
    nk: int = 0
    layers_done: int = 0
    filled_total: int = 0
    empty_layers: int = 0
    empty_hemispheres: int = 0
    points_in_total: int = 0
    points_out_total: int = 0
    performance: dict = dataclasses.field(default_factory=dict)

    def advance(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", self.state.name, state.name)
        self.state = state

    def add_layer(self, stats: LayerStats) -> None:
        self.layers_done += 1
        self.filled_total += stats.n_filled
        self.points_in_total += stats.n_in
        self.points_out_total += stats.n_out
        self.empty_hemispheres += stats.empty_charts
        if stats.is_empty:
            self.empty_layers += 1
            logger.warning("Layer %d has no valid source points, filled entirely", stats.layer)
        elif stats.empty_charts:
            logger.warning("Layer %d: %d hemisphere(s) without triangulation", stats.layer, stats.empty_charts)


class RegridPipeline:
    """Regrid one variable from a source grid onto a destination grid.

    Parameters
    ----------
    config : RegridConfig
        Run options.
    store : DataStore, optional
        Storage backend. Default is `NetCDFStore`.

    """

    def __init__(self, config: RegridConfig, store: DataStore = None):
        self.config = config
        self.store = store if store is not None else NetCDFStore()
        self.context = RunContext()

        self.src: GridDescriptor | None = None
        self.dst: GridDescriptor | None = None
        self.src_proj: DualProjection | None = None
        self.dst_proj: DualProjection | None = None
        self.src_layout: FieldLayout | None = None
        self.dst_layout: FieldLayout | None = None
        self.interpolator: LayerInterpolator | None = None
        self._src_handle = None

    def __repr__(self):
        return f"{self.__class__.__name__}({self.config.varname!r}, state={self.context.state.name})"

    @track_performance
    def load_source_grid(self) -> GridDescriptor:
        """Open the source data and classify its grid against the field shape."""
        self.context.advance(PipelineState.LOAD_SOURCE_GRID)
        config, store = self.config, self.store

        self._src_handle = store.open_grid(config.src_path)
        info = store.describe_field(self._src_handle, config.varname)

        grid_handle = store.open_grid(config.src_grid.path)
        try:
            lon = store.read_coordinates(grid_handle, config.src_grid.lon_name)
            lat = store.read_coordinates(grid_handle, config.src_grid.lat_name)
            src = classify_grid(lon.values, lat.values, info.shape)
            self.src_layout = FieldLayout.build(info, len(src.shape))
            src = dataclasses.replace(src, dims=self.src_layout.horizontal_dims)

            if config.src_grid.count_name is not None:
                counts = store.read_integer_field(grid_handle, config.src_grid.count_name)
                src = src.with_valid_count(counts, self.src_layout.nk)
        finally:
            store.close(grid_handle)

        self.context.nk = self.src_layout.nk
        self.src = src
        logger.info(
            "Source grid [%s]: %s, shape=%s, nk=%d", config.src_grid.path, src.gtype.value, src.shape, self.context.nk
        )
        return src

    @track_performance
    def load_destination_grid(self) -> GridDescriptor:
        """Read and classify the destination grid (and its valid layer count)."""
        self.context.advance(PipelineState.LOAD_DEST_GRID)
        config, store = self.config, self.store

        grid_handle = store.open_grid(config.dst_grid.path)
        try:
            lon = store.read_coordinates(grid_handle, config.dst_grid.lon_name)
            lat = store.read_coordinates(grid_handle, config.dst_grid.lat_name)
            dst = classify_destination_grid(
                lon.values, lat.values, lon_dims=lon.dims, lat_dims=lat.dims, source_type=self.src.gtype
            )
            if config.dst_grid.count_name is not None:
                counts = store.read_integer_field(grid_handle, config.dst_grid.count_name)
                dst = dst.with_valid_count(counts, self.context.nk)
        finally:
            store.close(grid_handle)

        self.dst = dst
        self.dst_layout = self.src_layout.for_grid(dst)
        logger.info("Destination grid [%s]: %s, shape=%s", config.dst_grid.path, dst.gtype.value, dst.shape)
        return dst

    @track_performance
    def project(self) -> None:
        """Project both grids onto the dual stereographic charts."""
        self.context.advance(PipelineState.PROJECT)
        self.src_proj = project_grid(self.src)
        self.dst_proj = project_grid(self.dst)
        self._build_interpolator()

    def _build_interpolator(self) -> None:
        self.interpolator = LayerInterpolator(
            self.src,
            self.src_proj,
            self.dst,
            self.dst_proj,
            skip_first_last=self.config.skip_first_last,
            pole_tolerance=self.config.pole_tolerance,
        )

    @track_performance
    def transfer_mask(self) -> GridDescriptor:
        """Derive the destination valid layer count from the source one."""
        self.context.advance(PipelineState.MASK_TRANSFER)
        if self.dst.valid_count is not None:
            raise ConfigurationError("Cannot both specify destination mask and request mask transfer.")
        counts = transfer_valid_layer_count(self.interpolator, self.context.nk)
        self.dst = self.dst.with_valid_count(counts, self.context.nk, binary_mask=False)
        self._build_interpolator()
        return self.dst

    def _provenance(self) -> dict:
        command = self.config.command if self.config.command is not None else get_command(sys.argv)
        return {f"{PROGRAM_NAME}: command": command, f"{PROGRAM_NAME}: wdir": os.getcwd()}

    @track_performance
    def process_layer(self, out_handle, k: int, fill: VerticalFill) -> LayerStats:
        """Read, interpolate and write layer `k`."""
        config, store = self.config, self.store
        values = store.read_layer(self._src_handle, config.varname, k, self.src_layout)
        out, stats = self.interpolator.interpolate_layer(k, values, fill)
        store.write_layer(out_handle, config.varname, k, self.dst_layout, out)

        self.context.add_layer(stats)
        logger.debug("%s", stats)
        return stats

    def run(self) -> RunContext:
        """Execute all stages.

        Returns
        -------
        RunContext
            Diagnostics of the completed run.

        Raises
        ------
        ConfigurationError, DataStoreError
            On any fatal error. The temporary destination is removed and the
            destination path is left untouched.

        """
        config, store, ctx = self.config, self.store, self.context
        tmp_path = config.tmp_path
        out_handle = None
        created = committed = False
        try:
            self.load_source_grid()
            self.load_destination_grid()
            self.project()
            if config.transfer_mask:
                self.transfer_mask()

            created = True
            out_handle = store.create_destination(
                tmp_path, self._src_handle, config.varname, self.dst_layout, config.deflate, self._provenance()
            )

            fill = VerticalFill(config.fill_policy, self.dst.size, ctx.nk)
            ctx.advance(PipelineState.PER_LAYER)
            for k in range(ctx.nk):
                self.process_layer(out_handle, k, fill)

            ctx.advance(PipelineState.FINALIZE)
            store.close(out_handle)
            out_handle = None
            store.commit(tmp_path, config.dst_path)
            committed = True
            ctx.advance(PipelineState.DONE)
        finally:
            if out_handle is not None:
                store.close(out_handle)
            if self._src_handle is not None:
                store.close(self._src_handle)
                self._src_handle = None
            ctx.performance = getattr(self, "_performance_metrics", {})
            if not committed:
                ctx.advance(PipelineState.FAILED)
                if created:
                    store.discard(tmp_path)

        logger.debug("Total filled destination points: %d", ctx.filled_total)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(format_performance(ctx.performance))
        logger.info(
            "Regridded [%s] %d layer(s) -> [%s] (%d empty layer(s))",
            config.varname,
            ctx.layers_done,
            config.dst_path,
            ctx.empty_layers,
        )
        return ctx


def regrid(
    src_path: str | Path,
    dst_path: str | Path,
    varname: str,
    src_grid: GridSpec,
    dst_grid: GridSpec,
    store: DataStore = None,
    **kwargs,
) -> RunContext:
    """Regrid `varname` from `src_path` onto the grid `dst_grid`, writing `dst_path`.

    Keyword arguments are passed to `RegridConfig`.
    """
    config = RegridConfig(src_path, dst_path, varname, src_grid, dst_grid, **kwargs)
    return RegridPipeline(config, store=store).run()
