"""
IQR-based outlier detection for projected coordinates.

A point is an outlier when its distance from the origin falls outside
[Q1 - k·IQR, Q3 + k·IQR] over the distance distribution. PCA output is
already centered, so distance from the origin is distance from the
centroid. k defaults to 2.5, looser than Tukey's 1.5, because PCA
projections of embeddings have naturally heavy tails.

Quartiles use the sorted-index rule: q1 = d[floor(0.25·n)],
q3 = d[floor(0.75·n)]. With IQR = 0 (constant distances) nothing is
flagged.

Flagged points are dampened toward the origin (×0.3 by default) at
display time so a handful of extreme points cannot compress the layout.
The flag itself is exposed so consumers can style outliers.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class OutlierReport:
    """Per-point flags plus the statistics that produced them."""
    flags: List[bool] = field(default_factory=list)
    distances: List[float] = field(default_factory=list)
    q1: float = 0.0
    q3: float = 0.0
    iqr: float = 0.0
    lower_bound: float = 0.0
    upper_bound: float = 0.0

    @property
    def count(self) -> int:
        return sum(self.flags)

    @property
    def indices(self) -> List[int]:
        return [i for i, flagged in enumerate(self.flags) if flagged]


class OutlierDetector:
    """Flags and dampens extreme points in projected coordinates."""

    def __init__(self, iqr_multiplier: float = 2.5, dampening: float = 0.3):
        if iqr_multiplier < 0:
            raise ValueError("iqr_multiplier must be non-negative")
        if not 0 < dampening <= 1:
            raise ValueError("dampening must be in (0, 1]")
        self.iqr_multiplier = iqr_multiplier
        self.dampening = dampening

    def detect(self, coords: Sequence[Sequence[float]]) -> OutlierReport:
        """Flag points whose distance from the origin is outside the IQR fence."""
        points = np.asarray(coords, dtype=float)
        if points.size == 0:
            return OutlierReport()
        if points.ndim == 1:
            points = points.reshape(-1, 1)

        distances = np.linalg.norm(points, axis=1)
        n = len(distances)
        ordered = np.sort(distances)
        q1 = float(ordered[math.floor(n * 0.25)])
        q3 = float(ordered[min(math.floor(n * 0.75), n - 1)])
        iqr = q3 - q1

        if iqr <= 0:
            logger.debug(f"Outliers: IQR is zero over {n} points; none flagged")
            return OutlierReport(
                flags=[False] * n,
                distances=distances.tolist(),
                q1=q1, q3=q3, iqr=0.0,
                lower_bound=q1, upper_bound=q3,
            )

        lower = q1 - self.iqr_multiplier * iqr
        upper = q3 + self.iqr_multiplier * iqr
        flags = [bool(d < lower or d > upper) for d in distances]

        flagged = sum(flags)
        if flagged:
            logger.debug(
                f"Outliers: {flagged}/{n} flagged (q1={q1:.3f}, q3={q3:.3f}, "
                f"bounds=[{lower:.3f}, {upper:.3f}])"
            )
        return OutlierReport(
            flags=flags,
            distances=distances.tolist(),
            q1=q1, q3=q3, iqr=iqr,
            lower_bound=lower, upper_bound=upper,
        )

    def dampen(self, coords: Sequence[Sequence[float]], report: OutlierReport) -> np.ndarray:
        """Return a copy of coords with flagged points scaled toward the origin."""
        points = np.array(coords, dtype=float, copy=True)
        if report.flags:
            mask = np.asarray(report.flags, dtype=bool)
            points[mask] *= self.dampening
        return points
