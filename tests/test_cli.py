import argparse
import logging
import tempfile
import unittest
from pathlib import Path

import netCDF4
import numpy as np
import numpy.testing as npt
import pytest

from netcdf_helpers import read_field, write_rectangular_field, write_station_grid
from regridll import cli, utils
from regridll.constants import PROGRAM_VERSION
from regridll.fill import FillPolicy

logger = logging.getLogger(__name__)
utils.enable_logging(extra_loggers=[__name__])


class TestParser:
    """Test command line parsing."""

    def test_grid_option(self):
        spec = cli.parse_grid_option(["grid.nc", "lon", "lat"])
        assert spec.path == "grid.nc"
        assert spec.count_name is None
        assert cli.parse_grid_option(["grid.nc", "lon", "lat", "kmt"]).count_name == "kmt"

        with pytest.raises(argparse.ArgumentTypeError, match="expects"):
            cli.parse_grid_option(["grid.nc", "lon"])
        with pytest.raises(argparse.ArgumentTypeError, match="expects"):
            cli.parse_grid_option(["grid.nc", "lon", "lat", "kmt", "extra"])

    def test_defaults(self):
        args = cli.build_parser().parse_args(
            ["-i", "in.nc", "-o", "out.nc", "-v", "temp", "-gi", "in.nc", "lon", "lat", "-go", "g.nc", "x", "y"]
        )
        assert args.src_path == "in.nc"
        assert args.grid_in == ["in.nc", "lon", "lat"]
        assert args.fill_policy is None
        assert args.deflate == 0
        assert args.verbosity == 1
        assert not args.skip_first_last
        assert not args.transfer_mask
        assert args.log_file is False

        args = cli.build_parser().parse_args(
            ["-i", "in.nc", "-o", "out.nc", "-v", "temp", "-gi", "in.nc", "lon", "lat", "-go", "g.nc", "x", "y", "-l"]
        )
        assert args.log_file is True

    def test_fill_options(self):
        base = ["-i", "a.nc", "-o", "b.nc", "-v", "t", "-gi", "a.nc", "x", "y", "-go", "g.nc", "x", "y"]
        parser = cli.build_parser()
        assert parser.parse_args(base + ["-m"]).fill_policy is FillPolicy.NAN
        assert parser.parse_args(base + ["-n"]).fill_policy is FillPolicy.PROPAGATE_DOWN

        with pytest.raises(SystemExit) as exc:
            parser.parse_args(base + ["-m", "-n"])
        assert exc.value.code == 2

    def test_invalid_arguments(self):
        base = ["-i", "a.nc", "-o", "b.nc", "-v", "t", "-go", "g.nc", "x", "y"]
        with pytest.raises(SystemExit) as exc:
            cli.cmd_line_call(base + ["-gi", "a.nc", "x"])
        assert exc.value.code == 2

        with pytest.raises(SystemExit) as exc:
            cli.cmd_line_call(base + ["-gi", "a.nc", "x", "y", "-d", "12"])
        assert exc.value.code == 2

        with pytest.raises(SystemExit) as exc:
            cli.cmd_line_call(base + ["-gi", "a.nc", "x", "y", "-V", "3"])
        assert exc.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.cmd_line_call(["--version"])
        assert exc.value.code == 0
        assert capsys.readouterr().out.strip() == f"regrid_ll v{PROGRAM_VERSION}"


class CommandLineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.__tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.__tmp_dir.cleanup)
        self.tmp_dir = Path(self.__tmp_dir.name)

        lon = np.arange(0.0, 41.0, 10.0)
        lat = np.arange(-20.0, 21.0, 10.0)
        lon2d, lat2d = np.meshgrid(lon, lat)
        self.values = np.stack([lon2d + lat2d, lon2d - lat2d])
        counts = np.full(lon2d.shape, 2)
        counts[0] = 1
        self.src_path = write_rectangular_field(self.tmp_dir / "src.nc", lon, lat, self.values, counts=counts)
        self.grid_path = write_station_grid(self.tmp_dir / "stations.nc", [10.0, 20.0, 90.0], [10.0, -20.0, 0.0])
        self.dst_path = self.tmp_dir / "out.nc"

    def base_args(self):
        return ["-i", str(self.src_path), "-o", str(self.dst_path), "-v", "temp"]

    def test_regrid(self):
        status = cli.cmd_line_call(
            self.base_args()
            + ["-gi", str(self.src_path), "lon", "lat", "kmt", "-go", str(self.grid_path), "lon", "lat"]
            + ["-t", "-m", "-d", "5", "-V", "0"]
        )
        self.assertEqual(status, 0)

        out = read_field(self.dst_path)[0]
        npt.assert_allclose(out[:, 0], [20.0, 0.0], atol=1e-4)
        # Transferred count of 1 at lat -20, nothing at the station outside the source grid.
        npt.assert_allclose(out[0, 1], 0.0, atol=1e-4)
        self.assertTrue(np.isnan(out[1, 1]))
        self.assertTrue(np.isnan(out[:, 2]).all())

        with netCDF4.Dataset(self.dst_path) as ds:
            command = ds.getncattr("regrid_ll: command")
            self.assertTrue(command.startswith("regrid_ll -i "))
            self.assertIn("-t", command.split())
            self.assertTrue(ds.variables["temp"].filters()["zlib"])

    def test_log_file(self):
        log_dir = self.tmp_dir / "logs"
        log_dir.mkdir()
        self.addCleanup(utils.enable_logging, extra_loggers=[__name__])

        status = cli.cmd_line_call(
            self.base_args()
            + ["-gi", str(self.src_path), "lon", "lat", "-go", str(self.grid_path), "lon", "lat"]
            + ["-V", "0", "-l", str(log_dir)]
        )
        self.assertEqual(status, 0)
        self.assertTrue(self.dst_path.exists())

        log_files = list(log_dir.glob("regrid_ll.*.log"))
        self.assertEqual(len(log_files), 1)
        txt = log_files[0].read_text()
        self.assertIn("Supplied arguments:", txt)
        self.assertIn("Performance Summary:", txt)

    def test_fatal_error(self):
        with self.assertRaises(SystemExit) as exc:
            cli.cmd_line_call(
                self.base_args()
                + ["-gi", str(self.src_path), "lon", "lat", "-go", str(self.grid_path), "lon", "lat", "-t", "-V", "0"]
            )
        self.assertEqual(exc.exception.code, 1)
        self.assertFalse(self.dst_path.exists())

    def test_missing_input(self):
        args = ["-i", str(self.tmp_dir / "missing.nc"), "-o", str(self.dst_path), "-v", "temp"]
        with self.assertRaises(SystemExit) as exc:
            cli.cmd_line_call(
                args + ["-gi", str(self.src_path), "lon", "lat", "-go", str(self.grid_path), "lon", "lat", "-V", "0"]
            )
        self.assertEqual(exc.exception.code, 1)
        self.assertFalse(self.dst_path.exists())


if __name__ == "__main__":
    unittest.main()
