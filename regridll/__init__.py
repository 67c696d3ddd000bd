"""Horizontal regridding of layered geophysical fields between lat/lon grids,
using piecewise-linear interpolation on dual stereographic triangulations.
"""

from . import dataio, exceptions, fill, grid, interpolate, mask, pipeline, projection, utils
from .constants import PROGRAM_VERSION as __version__
from .pipeline import GridSpec, RegridConfig, RegridPipeline, regrid

__all__ = [
    "dataio",
    "exceptions",
    "fill",
    "grid",
    "interpolate",
    "mask",
    "pipeline",
    "projection",
    "utils",
    "GridSpec",
    "RegridConfig",
    "RegridPipeline",
    "regrid",
]
