"""
Manifold utilities for planning and traversal.

Contains:
- Path length and arc-length interpolation functions
- Vector and subspace helpers (normalization, ball sampling, principal angles)
- Ambient bounding box configuration
- Obstacle checking

All state spaces and planners use these shared utilities for consistency.
"""

from typing import Any, Tuple, List, Dict, Sequence
from dataclasses import dataclass
import math

import numpy as np


# ============================================================================
# Path analysis
# ============================================================================

def calculate_path_length(path: np.ndarray) -> float:
    """
    Calculate total ambient length of a polyline.

    Args:
        path: Path points as np.ndarray of shape [N, n]
    Returns:
        Sum of consecutive Euclidean distances
    """
    pts = np.asarray(path, dtype=np.float64)
    if len(pts) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(pts[1:] - pts[:-1], axis=1)))


def precompute_cumulative_distances(path: np.ndarray) -> Tuple[np.ndarray, float]:
    """Precompute cumulative arc-length distances for a polyline path.

    Returns (cum_dist, total_length) where cum_dist[i] is the distance from
    the start to point i.
    """
    pts = np.asarray(path, dtype=np.float64)
    if len(pts) < 2:
        return np.asarray([0.0]), 0.0

    seg_len = np.linalg.norm(pts[1:] - pts[:-1], axis=1)
    cum = np.concatenate([[0.0], np.cumsum(seg_len)])
    return cum, float(cum[-1])


def locate_arc_length(cum_dist: np.ndarray, s: float) -> Tuple[int, float]:
    """Segment index i and local fraction t such that s lies on segment [i, i + 1]."""
    total = float(cum_dist[-1])
    if len(cum_dist) < 2 or s <= 0.0:
        return 0, 0.0
    if s >= total:
        return len(cum_dist) - 2, 1.0

    i = int(np.searchsorted(cum_dist, s, side="right") - 1)
    i = min(max(i, 0), len(cum_dist) - 2)
    s0 = float(cum_dist[i])
    s1 = float(cum_dist[i + 1])
    t = 0.0 if s1 == s0 else (float(s) - s0) / (s1 - s0)
    return i, t


# ============================================================================
# Vector utilities
# ============================================================================

def normalize_vector(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    n = np.linalg.norm(v)
    return v / n if n > eps else v


def sample_in_ball(rng: np.random.Generator, dim: int, radius: float) -> np.ndarray:
    """Uniform sample inside the dim-dimensional ball of the given radius."""
    direction = normalize_vector(rng.standard_normal(dim))
    return radius * rng.random() ** (1.0 / dim) * direction


def sample_on_sphere(rng: np.random.Generator, dim: int, radius: float) -> np.ndarray:
    """Uniform sample on the dim-dimensional sphere of the given radius."""
    return radius * normalize_vector(rng.standard_normal(dim))


def principal_angle(basis_a: np.ndarray, basis_b: np.ndarray) -> float:
    """Largest principal angle (radians) between two subspaces with orthonormal bases."""
    if basis_a.shape[1] != basis_b.shape[1]:
        return math.pi / 2
    cosines = np.linalg.svd(basis_a.T @ basis_b, compute_uv=False)
    return float(math.acos(float(np.clip(np.min(cosines), -1.0, 1.0))))


def ball_volume(dim: int, radius: float) -> float:
    return math.pi ** (dim / 2.0) / math.gamma(dim / 2.0 + 1.0) * radius ** dim


# ============================================================================
# Ambient Bounds
# ============================================================================

@dataclass
class AmbientBounds:
    """Axis-aligned bounding box of the ambient space (used for sampling)."""
    low: np.ndarray
    high: np.ndarray

    def __post_init__(self):
        self.low = np.asarray(self.low, dtype=np.float64)
        self.high = np.asarray(self.high, dtype=np.float64)
        if self.low.shape != self.high.shape or self.low.ndim != 1:
            raise ValueError(f"Bounds must be matching 1-D arrays, got {self.low.shape} and {self.high.shape}")
        if np.any(self.high <= self.low):
            raise ValueError("Every upper bound must exceed its lower bound")

    @classmethod
    def symmetric(cls, dim: int, bound: float) -> "AmbientBounds":
        return cls(low=np.full(dim, -float(bound)), high=np.full(dim, float(bound)))

    @property
    def dim(self) -> int:
        return int(self.low.shape[0])

    def contains(self, x: np.ndarray) -> bool:
        x = np.asarray(x)
        return bool(np.all(x >= self.low) and np.all(x <= self.high))

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(self.low, self.high)


# ============================================================================
# Obstacle Checking
# ============================================================================

class ObstacleChecker:
    """Handles obstacle collision detection for points of any dimension."""

    def __init__(self, obstacle_data: List[Dict[str, Any]], safety_margin: float = 0.0,
                 point_groups: int = 1):
        """
        Initialize obstacle checker.

        Args:
            obstacle_data: List of obstacle dictionaries with keys:
                - "size": box extents along each axis
                - "pos" or "position": box center
            safety_margin: Additional clearance around obstacles
            point_groups: Number of equally sized points stacked in one state
                (e.g. the joints of a chain). Each group is checked on its own.
        """
        self.obstacles = []
        self.safety_margin = safety_margin
        self.point_groups = point_groups

        for obs in obstacle_data:
            size = np.asarray(obs["size"], dtype=np.float64)
            # Apply symmetric padding once up front
            size = np.maximum(size + self.safety_margin * 2, 1e-9)
            pos = np.asarray(obs.get("pos", obs.get("position")), dtype=np.float64)
            if pos.shape != size.shape:
                raise ValueError(f"Obstacle pos {pos.shape} and size {size.shape} differ in dimension")

            self.obstacles.append({"min": pos - size / 2, "max": pos + size / 2})

    @staticmethod
    def box(low: Sequence[float], high: Sequence[float]) -> Dict[str, np.ndarray]:
        """Obstacle dictionary for the box spanning [low, high]."""
        low = np.asarray(low, dtype=np.float64)
        high = np.asarray(high, dtype=np.float64)
        return {"size": high - low, "pos": (low + high) / 2}

    def is_point_collision_free(self, point: np.ndarray) -> bool:
        """Check if a point (or every stacked sub-point) is collision-free."""
        groups = np.asarray(point, dtype=np.float64).reshape(self.point_groups, -1)

        for obs in self.obstacles:
            inside = np.all(groups >= obs["min"], axis=1) & np.all(groups <= obs["max"], axis=1)
            if np.any(inside):
                return False

        return True

    def __call__(self, point: np.ndarray) -> bool:
        return self.is_point_collision_free(point)
