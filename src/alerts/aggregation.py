"""Time aggregation of windowed sensor readings."""

import logging
from typing import Sequence

import numpy as np

from src.alerts.config import AggregationFunction, DEFAULT_PERCENTILE
from src.alerts.models import SensorReading, TimeAggregation

logger = logging.getLogger(__name__)


def has_enough_data(readings: Sequence[SensorReading], aggregation: TimeAggregation) -> bool:
    """Check the minimum data points requirement. Empty sets never qualify."""
    return len(readings) > 0 and len(readings) >= aggregation.minimum_data_points


def aggregate(readings: Sequence[SensorReading], aggregation: TimeAggregation) -> float:
    """Reduce readings to a single value.

    Readings are expected in timestamp order. Returns 0.0 when there are
    fewer readings than ``minimum_data_points``.

    Args:
        readings: Filtered readings inside the window.
        aggregation: Aggregation function and window.

    Returns:
        Aggregated value.
    """
    if not has_enough_data(readings, aggregation):
        return 0.0

    values = np.array([r.value for r in readings], dtype=float)
    values = values[~np.isnan(values)]
    if values.size == 0:
        return 0.0

    fn = aggregation.function

    if fn == AggregationFunction.AVERAGE:
        return float(np.mean(values))
    if fn == AggregationFunction.SUM:
        return float(np.sum(values))
    if fn == AggregationFunction.MINIMUM:
        return float(np.min(values))
    if fn == AggregationFunction.MAXIMUM:
        return float(np.max(values))
    if fn == AggregationFunction.COUNT:
        return float(values.size)
    if fn == AggregationFunction.MEDIAN:
        return float(np.median(values))
    if fn == AggregationFunction.PERCENTILE:
        return float(np.percentile(values, DEFAULT_PERCENTILE))
    if fn == AggregationFunction.STANDARD_DEVIATION:
        # Population formula (ddof=0)
        return float(np.std(values))
    if fn == AggregationFunction.RATE_OF_CHANGE:
        return _rate_of_change(readings)
    if fn == AggregationFunction.LATEST:
        return float(readings[-1].value)

    logger.warning("Unknown aggregation %s, falling back to average", fn)
    return float(np.mean(values))


def _rate_of_change(readings: Sequence[SensorReading]) -> float:
    """Change per minute between the first and last reading."""
    if len(readings) < 2:
        return 0.0
    first, last = readings[0], readings[-1]
    minutes = (last.timestamp - first.timestamp).total_seconds() / 60.0
    if minutes <= 0:
        return 0.0
    return (last.value - first.value) / minutes
