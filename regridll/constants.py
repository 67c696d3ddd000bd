"""Constants shared by the regridding engine."""

import numpy as np

PROGRAM_NAME = "regrid_ll"
PROGRAM_VERSION = "0.1.0"

DEG2RAD = np.pi / 180.0

# Radius (planar units of the unit-sphere stereographic projection) around a
# projection's center within which only the first source point of a layer is
# kept. Roughly 1e-4 degrees of co-latitude.
POLE_TOLERANCE = 1.0e-6

# Suffix appended to the destination path while layers are being written.
TMP_SUFFIX = ".tmp"

# Output file format used for the destination.
NETCDF_FORMAT = "NETCDF4"
MAX_DEFLATE_LEVEL = 9

# Console verbosity (CLI -V) to logging level names.
VERBOSITY_LEVELS = {0: "WARNING", 1: "INFO", 2: "DEBUG"}
VERBOSE_DEFAULT = 1
