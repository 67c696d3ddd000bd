"""Command line interface: ``regrid_ll`` (or ``python -m regridll``).

Examples
--------
% regrid_ll -i ocean.nc -o ocean.latlon.nc -v temp \
    -gi ocean_grid.nc lon_rho lat_rho kmt -go latlon.nc lon lat -t -V 2

% regrid_ll -i sst.nc -o sst.stations.nc -v sst -gi sst.nc lon lat \
    -go stations.nc lon lat -m
"""

import argparse
import logging
import sys

from .constants import MAX_DEFLATE_LEVEL, PROGRAM_NAME, PROGRAM_VERSION, VERBOSE_DEFAULT, VERBOSITY_LEVELS
from .fill import FillPolicy
from .pipeline import GridSpec, RegridConfig, RegridPipeline
from .utils import enable_logging, get_command


def parse_grid_option(values, option: str = "grid") -> GridSpec:
    """Convert ``<grid> <lon> <lat> [<count>]`` option values to a `GridSpec`."""
    if not 3 <= len(values) <= 4:
        raise argparse.ArgumentTypeError(
            f"{option} expects <grid file> <lon var> <lat var> [<valid layer count var>], got {len(values)} value(s)"
        )
    return GridSpec(*values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Regrid a layered geophysical field between horizontal lat/lon grids.",
    )
    parser.add_argument("-i", "--input", type=str, required=True, dest="src_path", help="Source data file.")
    parser.add_argument("-o", "--output", type=str, required=True, dest="dst_path", help="Destination data file.")
    parser.add_argument("-v", "--variable", type=str, required=True, dest="varname", help="Variable to regrid.")
    parser.add_argument(
        "-gi",
        "--grid_in",
        type=str,
        nargs="+",
        required=True,
        metavar="ARG",
        help="Source grid: <grid file> <lon var> <lat var> [<valid layer count var>].",
    )
    parser.add_argument(
        "-go",
        "--grid_out",
        type=str,
        nargs="+",
        required=True,
        metavar="ARG",
        help="Destination grid: <grid file> <lon var> <lat var> [<valid layer count var>].",
    )
    parser.add_argument(
        "-d",
        "--deflate",
        type=int,
        choices=range(MAX_DEFLATE_LEVEL + 1),
        default=0,
        metavar="LEVEL",
        help=f"Output deflate level, 0-{MAX_DEFLATE_LEVEL} (default=0).",
    )
    fill = parser.add_mutually_exclusive_group()
    fill.add_argument(
        "-m",
        "--nan_fill",
        action="store_const",
        const=FillPolicy.NAN,
        dest="fill_policy",
        help="Fill points outside the source grid with missing values (default=0).",
    )
    fill.add_argument(
        "-n",
        "--propagate",
        action="store_const",
        const=FillPolicy.PROPAGATE_DOWN,
        dest="fill_policy",
        help="Fill points outside the source grid with the last finite value from a shallower layer.",
    )
    parser.add_argument(
        "-s",
        "--skip_first_last",
        action="store_true",
        help="Ignore the first and last source columns (duplicated seam columns).",
    )
    parser.add_argument(
        "-t",
        "--transfer_mask",
        action="store_true",
        help="Derive the destination valid layer count from the source one.",
    )
    parser.add_argument(
        "-V",
        "--verbosity",
        type=int,
        choices=sorted(VERBOSITY_LEVELS),
        default=VERBOSE_DEFAULT,
        help=f"Verbosity: 0 warnings, 1 info, 2 debug (default={VERBOSE_DEFAULT}).",
    )
    parser.add_argument(
        "-l",
        "--log_file",
        nargs="?",
        const=True,
        default=False,
        metavar="PATH",
        help="Also log (at debug level) to a file, or to a time-stamped file in a directory "
        "(default=current directory when given without a path).",
    )
    parser.add_argument("--version", action="version", version=f"{PROGRAM_NAME} v{PROGRAM_VERSION}")
    return parser


def cmd_line_call(argv=None):
    """Method to process command line arguments (`regrid_ll --help`)."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        src_grid = parse_grid_option(args.grid_in, "-gi")
        dst_grid = parse_grid_option(args.grid_out, "-go")
    except (argparse.ArgumentTypeError, ValueError) as e:
        parser.error(str(e))

    # Start logging to the console (stdout) and optionally a file.
    logger = enable_logging(log_level=VERBOSITY_LEVELS[args.verbosity], log_file=args.log_file)
    logger.debug("Supplied arguments: %s", vars(args))

    try:
        config = RegridConfig(
            src_path=args.src_path,
            dst_path=args.dst_path,
            varname=args.varname,
            src_grid=src_grid,
            dst_grid=dst_grid,
            fill_policy=args.fill_policy or FillPolicy.ZERO,
            skip_first_last=args.skip_first_last,
            transfer_mask=args.transfer_mask,
            deflate=args.deflate,
            command=get_command([PROGRAM_NAME, *(argv if argv is not None else sys.argv[1:])]),
        )
        RegridPipeline(config).run()
    except Exception:
        logging.exception("An exception occurred:")
        parser.exit(status=1, message="Script failed with errors! Exiting early...\n")
    return 0


if __name__ == "__main__":
    cmd_line_call()
