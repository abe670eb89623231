import math
from typing import Optional, Tuple

Point = Tuple[float, float]


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def _safe_acos(x: float) -> float:
    return math.acos(clamp(x, -1.0, 1.0))


def angle(vertex: Point, first: Point, second: Point) -> float:
    """Angle at `vertex` between the rays to `first` and `second`, in radians."""
    v1x = first[0] - vertex[0]; v1y = first[1] - vertex[1]
    v2x = second[0] - vertex[0]; v2y = second[1] - vertex[1]
    dot = v1x*v2x + v1y*v2y
    magnitude = max(math.hypot(v1x, v1y) * math.hypot(v2x, v2y), 1e-4)
    return _safe_acos(dot / magnitude)


def depth_ratio(hip: Point, knee: Point, ankle: Point) -> float:
    hip_to_knee = hip[1] - knee[1]
    ankle_to_knee = ankle[1] - knee[1]
    if ankle_to_knee == 0:
        return 0.0
    return clamp(hip_to_knee / ankle_to_knee)


def midpoint(a: Optional[Point], b: Optional[Point]) -> Optional[Point]:
    if a is None or b is None:
        return None
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)


def distance(p1: Point, p2: Point) -> float:
    return math.hypot(p1[0]-p2[0], p1[1]-p2[1])
