import logging

import numpy as np
import numpy.testing as npt
import pytest

from regridll import utils
from regridll.exceptions import ConfigurationError
from regridll.grid import GridDescriptor
from regridll.interpolate import LayerInterpolator
from regridll.mask import transfer_valid_layer_count
from regridll.projection import project_grid

logger = logging.getLogger(__name__)
utils.enable_logging(extra_loggers=[__name__])


def make_interpolator(src, dst, **kwargs):
    return LayerInterpolator(src, project_grid(src), dst, project_grid(dst), **kwargs)


class TestMaskTransfer:
    """Test the valid layer count transfer."""

    def test_identity_transfer(self):
        lon = np.array([[0.0, 10.0], [0.0, 10.0]])
        lat = np.array([[0.0, 0.0], [10.0, 10.0]])
        counts = np.array([[0, 1], [2, 2]])
        src = GridDescriptor.curvilinear(lon, lat).with_valid_count(counts, nk=2)
        dst = GridDescriptor.curvilinear(lon, lat)

        result = transfer_valid_layer_count(make_interpolator(src, dst), nk=2)
        assert result.dtype.kind == "i"
        npt.assert_array_equal(result, counts)

    def test_outside_hull_is_invalid(self):
        src = GridDescriptor.rectangular([0.0, 10.0, 20.0], [-10.0, 0.0, 10.0])
        src = src.with_valid_count(np.full(src.shape, 3), nk=3)
        dst = GridDescriptor.unstructured([10.0, 90.0, 10.0], [0.0, 0.0, -60.0])

        result = transfer_valid_layer_count(make_interpolator(src, dst), nk=3)
        assert result.shape == (3,)
        npt.assert_array_equal(result, [3, 0, 0])

    def test_counts_within_range(self):
        rng = np.random.default_rng(3)
        nk = 4
        src = GridDescriptor.rectangular(np.arange(0.0, 91.0, 10.0), np.arange(-40.0, 41.0, 10.0))
        src = src.with_valid_count(rng.integers(0, nk + 1, src.shape), nk=nk)
        dst = GridDescriptor.rectangular(np.arange(-5.0, 96.0, 3.3), np.arange(-45.0, 46.0, 2.5))

        result = transfer_valid_layer_count(make_interpolator(src, dst), nk=nk)
        assert result.shape == dst.shape
        assert result.min() >= 0
        assert result.max() <= nk
        npt.assert_array_equal(result, np.rint(result))

    def test_rounding_to_nearest(self):
        src = GridDescriptor.unstructured([0.0, 10.0, 0.0, 10.0], [-10.0, -10.0, 10.0, 10.0])
        src = src.with_valid_count(np.array([1, 2, 1, 2]), nk=2, binary_mask=False)
        dst = GridDescriptor.unstructured([3.0, 7.0], [0.0, 0.0])

        result = transfer_valid_layer_count(make_interpolator(src, dst), nk=2)
        npt.assert_array_equal(result, [1, 2])

    def test_source_without_counts(self):
        grid = GridDescriptor.unstructured([0.0, 10.0, 0.0], [0.0, 0.0, 10.0])
        with pytest.raises(ConfigurationError, match="source grid has none"):
            transfer_valid_layer_count(make_interpolator(grid, grid), nk=2)
