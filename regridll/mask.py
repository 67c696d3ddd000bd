"""Transfer of the valid layer count from the source to the destination grid."""

from __future__ import annotations

import logging

import numpy as np

from .exceptions import ConfigurationError
from .interpolate import LayerInterpolator

logger = logging.getLogger(__name__)


def transfer_valid_layer_count(interpolator: LayerInterpolator, nk: int) -> np.ndarray:
    """Interpolate the source valid layer count onto the destination grid.

    The counts are interpolated as floating point values with no layer
    filtering, rounded to the nearest integer and clipped to [0, nk].
    Destination points outside both triangulations get a count of 0.

    Parameters
    ----------
    interpolator : LayerInterpolator
        Interpolator whose source grid carries a valid layer count.
    nk : int
        Number of layers.

    Returns
    -------
    np.ndarray
        Integer counts in the destination grid's horizontal shape.

    Raises
    ------
    ConfigurationError
        If the source grid has no valid layer count.

    """
    src, dst = interpolator.src, interpolator.dst
    if src.valid_count is None:
        raise ConfigurationError("Cannot transfer a valid layer count: the source grid has none.")

    values = src.valid_count.astype(np.float64)
    candidates = interpolator.source_candidates(values)
    raw, empty_charts = interpolator.evaluate(values, candidates, np.ones(dst.size, dtype=bool))
    if empty_charts:
        logger.warning("Valid layer count transfer: %d chart(s) without triangulation", empty_charts)

    counts = np.where(np.isfinite(raw), np.floor(raw + 0.5), 0.0)
    counts = np.clip(counts, 0, nk).astype(np.int64)
    logger.info(
        "Transferred valid layer count: %d of %d destination points with valid layers",
        np.count_nonzero(counts),
        dst.size,
    )
    return counts.reshape(dst.shape)
