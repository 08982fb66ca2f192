# PATH: core/math.py
"""
Math utilities for the simulation overlay.

Integer-only fee arithmetic; percentiles are computed with Fractions so the
result does not depend on float rounding.
"""

from fractions import Fraction
from typing import Iterable, Union


def weighted_percentile(
    points: Iterable[tuple[int, int]],
    percentile: Union[int, float],
) -> int:
    """
    Weighted percentile with linear interpolation.

    Points are sorted by value and each one is placed at the cumulative weight
    preceding it. The requested percentile of the span between the first and
    the last placed point is then interpolated linearly, so [(10, 1), (20, 1)]
    gives 10 at p0, 15 at p50 and 20 at p100. Zero-weight points carry no mass
    and are ignored unless every point has zero weight, in which case the
    lowest value is returned.

    Args:
        points: (value, weight) pairs
        percentile: Percentile in [0, 100]

    Returns:
        Interpolated value, floored to an integer (0 for empty input)

    Raises:
        ValueError: If the percentile is out of range or a weight is negative
    """
    if percentile < 0 or percentile > 100:
        raise ValueError(f"Percentile must be within [0, 100], got {percentile}")

    ordered = sorted(points, key=lambda point: point[0])
    if not ordered:
        return 0
    for value, weight in ordered:
        if weight < 0:
            raise ValueError(f"Weight cannot be negative: {weight} (value {value})")

    weighted = [(value, weight) for value, weight in ordered if weight > 0]
    if not weighted:
        return ordered[0][0]
    if len(weighted) == 1:
        return weighted[0][0]

    positions = []
    cumulative = 0
    for _, weight in weighted:
        positions.append(cumulative)
        cumulative += weight

    span = positions[-1]
    target = Fraction(str(percentile)) / 100 * span

    for index, position in enumerate(positions):
        if position < target:
            continue
        if index == 0 or position == target:
            return weighted[index][0]
        low_value, high_value = weighted[index - 1][0], weighted[index][0]
        low_position = positions[index - 1]
        fraction = (target - low_position) / (position - low_position)
        return int(low_value + (high_value - low_value) * fraction)

    return weighted[-1][0]

