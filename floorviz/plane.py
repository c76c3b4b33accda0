"""
Floor plane fitting (RANSAC) in pixel/depth space.

Points are (x, y, depth) with x = column, y = row and depth following the
project-wide polarity: larger value = farther from the camera.

Plane invariant for everything returned from this module:
  a*x + b*y + c*z + d = 0, |(a,b,c)| = 1, c >= 0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from floorviz.config import PlaneConfig
from floorviz.grids import InvalidInputError, as_bool_mask, require_same_size

logger = logging.getLogger(__name__)

# Upper bound on floats held by one batch of scored trials.
_MAX_BATCH_FLOATS = 4_000_000


@dataclass(frozen=True)
class PlaneEquation:
    a: float
    b: float
    c: float
    d: float

    @classmethod
    def horizontal(cls) -> "PlaneEquation":
        """Default plane (0,0,1,0) used when there is nothing to fit."""
        return cls(0.0, 0.0, 1.0, 0.0)

    @classmethod
    def from_normal(cls, normal: np.ndarray, d: float) -> "PlaneEquation":
        n = np.asarray(normal, dtype=np.float64).reshape(3)
        length = float(np.linalg.norm(n))
        if not np.isfinite(length) or length <= 0.0:
            raise InvalidInputError("plane normal has zero length")
        n = n / length
        d = float(d) / length
        if n[2] < 0.0:
            n, d = -n, -d
        return cls(float(n[0]), float(n[1]), float(n[2]), float(d))

    @property
    def normal(self) -> np.ndarray:
        return np.array([self.a, self.b, self.c], dtype=np.float64)

    @property
    def is_degenerate(self) -> bool:
        """True when depth cannot be solved for (c ~ 0) or coefficients are not finite."""
        vals = np.array(self.as_tuple(), dtype=np.float64)
        return (not np.isfinite(vals).all()) or abs(self.c) < 1e-9

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.a, self.b, self.c, self.d)

    def as_array(self) -> np.ndarray:
        return np.array(self.as_tuple(), dtype=np.float64)

    def depth_at(self, x, y):
        """Predicted depth z = -(a*x + b*y + d) / c (scalars or arrays)."""
        if self.is_degenerate:
            raise InvalidInputError(f"cannot query depth on degenerate plane {self.as_tuple()}")
        return -(self.a * np.asarray(x, dtype=np.float64) + self.b * np.asarray(y, dtype=np.float64) + self.d) / self.c

    def distance(self, points: np.ndarray) -> np.ndarray:
        """Unsigned point-to-plane distance for (N,3) points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        n = self.normal
        return np.abs(pts @ n + self.d) / float(np.linalg.norm(n))


def plane_through_points(p1, p2, p3) -> Optional[PlaneEquation]:
    """
    Plane through 3 points via the normalized cross product of two edge vectors.
    Returns None for collinear/coincident points.
    """
    p1 = np.asarray(p1, dtype=np.float64).reshape(3)
    p2 = np.asarray(p2, dtype=np.float64).reshape(3)
    p3 = np.asarray(p3, dtype=np.float64).reshape(3)
    n = np.cross(p2 - p1, p3 - p1)
    if float(np.linalg.norm(n)) <= 1e-12:
        return None
    return PlaneEquation.from_normal(n, -float(n @ p1))


def _least_squares_plane(points: np.ndarray) -> Optional[PlaneEquation]:
    if len(points) < 3:
        return None
    centroid = points.mean(axis=0)
    _u, _s, vt = np.linalg.svd(points - centroid, full_matrices=False)
    n = vt[-1]
    return PlaneEquation.from_normal(n, -float(n @ centroid))


def ransac_plane(
    points: np.ndarray,
    *,
    iterations: int = 1000,
    threshold: float = 0.1,
    rng: Optional[np.random.Generator] = None,
    batch_size: int = 64,
    refine_with_inliers: bool = False,
) -> Tuple[PlaneEquation, int]:
    """
    RANSAC plane fit.

    Each trial draws 3 points uniformly with replacement, builds the plane through
    them and counts points closer than `threshold`. The trial with the most inliers
    wins; ties keep the earliest trial. Degenerate triples score 0 inliers.

    Returns (plane, inlier_count). Fewer than 3 points -> (horizontal, 0).
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    n_pts = len(pts)
    if n_pts < 3:
        return PlaneEquation.horizontal(), 0

    rng = rng if rng is not None else np.random.default_rng()
    thr = float(threshold)
    per_batch = max(1, min(int(batch_size), _MAX_BATCH_FLOATS // n_pts))

    best_n: Optional[np.ndarray] = None
    best_d = 0.0
    best_count = 0

    remaining = max(0, int(iterations))
    while remaining > 0:
        b = min(per_batch, remaining)
        remaining -= b

        idx = rng.integers(0, n_pts, size=(b, 3))
        p1, p2, p3 = pts[idx[:, 0]], pts[idx[:, 1]], pts[idx[:, 2]]
        normals = np.cross(p2 - p1, p3 - p1)
        lengths = np.linalg.norm(normals, axis=1)
        valid = lengths > 1e-12

        with np.errstate(invalid="ignore", divide="ignore"):
            normals = normals / lengths[:, None]
            ds = -np.einsum("ij,ij->i", normals, p1)
            dist = np.abs(normals @ pts.T + ds[:, None])
            counts = np.where(valid, (dist < thr).sum(axis=1), 0)

        k = int(np.argmax(counts))
        if int(counts[k]) > best_count:
            best_count = int(counts[k])
            best_n = normals[k].copy()
            best_d = float(ds[k])

    if best_n is None:
        logger.warning("ransac_plane: no valid hypothesis among %d trials; using horizontal plane", int(iterations))
        return PlaneEquation.horizontal(), 0

    plane = PlaneEquation.from_normal(best_n, best_d)

    if refine_with_inliers and best_count >= 3:
        inl = plane.distance(pts) < thr
        refined = _least_squares_plane(pts[inl])
        if refined is not None:
            plane = refined

    logger.debug("ransac_plane: %d/%d inliers, plane=%s", best_count, n_pts, plane.as_tuple())
    return plane, best_count


def collect_floor_points(depth: np.ndarray, floor_mask: np.ndarray) -> np.ndarray:
    """(x, y, depth) triples for floor pixels with finite depth > 0."""
    require_same_size(depth=depth, floor_mask=floor_mask)
    z = np.asarray(depth, dtype=np.float64)
    if z.ndim == 3:
        z = z[..., 0]
    sel = as_bool_mask(floor_mask) & np.isfinite(z) & (z > 0.0)
    ys, xs = np.nonzero(sel)
    return np.column_stack((xs.astype(np.float64), ys.astype(np.float64), z[ys, xs]))


def fit_floor_plane(
    depth: np.ndarray,
    floor_mask: np.ndarray,
    cfg: PlaneConfig = PlaneConfig(),
    *,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> PlaneEquation:
    """
    Fit the floor plane to depth samples inside the floor mask.
    Fewer than 3 usable samples is not an error: the horizontal default is returned.
    """
    pts = collect_floor_points(depth, floor_mask)
    if len(pts) < 3:
        logger.warning("fit_floor_plane: only %d floor depth samples; using horizontal plane", len(pts))
        return PlaneEquation.horizontal()

    if rng is None:
        rng = np.random.default_rng(seed)

    plane, inliers = ransac_plane(
        pts,
        iterations=cfg.iterations,
        threshold=cfg.inlier_threshold,
        rng=rng,
        batch_size=cfg.batch_size,
        refine_with_inliers=cfg.refine_with_inliers,
    )
    logger.info("floor plane: inliers=%d/%d coeffs=%s", inliers, len(pts), tuple(round(v, 6) for v in plane.as_tuple()))
    return plane
