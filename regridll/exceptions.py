"""Exceptions raised by the regridding engine.

Configuration and data store failures are fatal. Interpolation degeneracies
(layers or hemispheres without valid source points, destination points
outside every triangulation) are not exceptions: they are absorbed by the
vertical fill policy and only counted.
"""


class RegridError(Exception):
    """Base class for all regridding errors."""


class ConfigurationError(RegridError, ValueError):
    """Grid/field dimension mismatch, conflicting options or invalid input."""


class DataStoreError(RegridError, OSError):
    """Failure opening, reading, writing or renaming a grid or data file."""
