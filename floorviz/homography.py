"""
Image -> floor-UV projective transforms.

Two ways to get one:
- homography_from_correspondences(): 4-point Direct Linear Transform (authoritative).
- homography_from_plane(): approximation from the fitted depth plane, assuming a
  pinhole camera with a guessed focal length (no intrinsics are available).

H is applied to homogeneous image-pixel coordinates and followed by a perspective
divide; its overall scale is arbitrary.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from floorviz.config import HomographyConfig
from floorviz.grids import InvalidInputError, as_bool_mask, require_size
from floorviz.plane import PlaneEquation

logger = logging.getLogger(__name__)


def _as_four_points(points, name: str) -> np.ndarray:
    try:
        arr = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name}: expected 4 (x, y) points ({e})") from e
    if arr.shape[0] != 4:
        raise InvalidInputError(f"{name}: need exactly 4 point correspondences, got {arr.shape[0]}")
    if not np.isfinite(arr).all():
        raise InvalidInputError(f"{name}: points must be finite")
    return arr


def _normalization_transform(pts: np.ndarray) -> np.ndarray:
    """
    Similarity that moves the centroid to the origin and sets the mean distance to sqrt(2).
    Conditions the DLT system; it is undone after solving.
    """
    centroid = pts.mean(axis=0)
    mean_dist = float(np.mean(np.linalg.norm(pts - centroid, axis=1)))
    if mean_dist <= 1e-12:
        raise InvalidInputError("correspondence points all coincide")
    s = np.sqrt(2.0) / mean_dist
    return np.array(
        [
            [s, 0.0, -s * centroid[0]],
            [0.0, s, -s * centroid[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def homography_from_correspondences(src_points, dst_points) -> np.ndarray:
    """
    Direct Linear Transform from exactly 4 (src -> dst) correspondences.

    Builds the 8x9 system A h = 0 (two rows per point) and takes the right singular
    vector of the smallest singular value (min |A h| subject to |h| = 1).

    Returns a 3x3 float64 matrix scaled so H[2,2] == 1 when that entry is non-zero.
    Raises InvalidInputError for != 4 points or degenerate (e.g. collinear) layouts.
    """
    src = _as_four_points(src_points, "src_points")
    dst = _as_four_points(dst_points, "dst_points")

    T_src = _normalization_transform(src)
    T_dst = _normalization_transform(dst)
    src_n = (np.column_stack((src, np.ones(4))) @ T_src.T)[:, :2]
    dst_n = (np.column_stack((dst, np.ones(4))) @ T_dst.T)[:, :2]

    A = np.zeros((8, 9), dtype=np.float64)
    for i in range(4):
        x, y = src_n[i]
        u, v = dst_n[i]
        A[2 * i] = [x, y, 1.0, 0.0, 0.0, 0.0, -u * x, -u * y, -u]
        A[2 * i + 1] = [0.0, 0.0, 0.0, x, y, 1.0, -v * x, -v * y, -v]

    _u, s, vt = np.linalg.svd(A)
    # A unique solution needs rank 8 (one-dimensional null space).
    if s[7] <= 1e-10 * s[0]:
        raise InvalidInputError("degenerate correspondences (three or more points are collinear)")

    H_n = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T_dst) @ H_n @ T_src

    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]
    return H


def apply_homography(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Map (...,2) points through H with perspective divide.
    Points that land at infinity (w == 0) come back as inf/nan.
    """
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    pts = np.asarray(points, dtype=np.float64)
    shape = pts.shape
    flat = pts.reshape(-1, 2)
    hom = np.column_stack((flat, np.ones(len(flat)))) @ H.T
    with np.errstate(divide="ignore", invalid="ignore"):
        out = hom[:, :2] / hom[:, 2:3]
    return out.reshape(shape)


def invert_homography(H: np.ndarray) -> np.ndarray:
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    det = float(np.linalg.det(H))
    scale = float(np.abs(H).max()) or 1.0
    if not np.isfinite(det) or abs(det) <= 1e-12 * scale**3:
        raise InvalidInputError("homography is singular and cannot be inverted")
    Hi = np.linalg.inv(H)
    if abs(Hi[2, 2]) > 1e-12:
        Hi = Hi / Hi[2, 2]
    return Hi


def _anchor_corners(width: int, height: int, floor_mask: Optional[np.ndarray]) -> np.ndarray:
    """TL, TR, BR, BL pixel-edge corners of the floor bounding box (or the full image)."""
    x0, y0, x1, y1 = 0.0, 0.0, float(width), float(height)
    if floor_mask is not None:
        m = as_bool_mask(floor_mask)
        ys, xs = np.nonzero(m)
        if len(xs) > 0:
            x0, x1 = float(xs.min()), float(xs.max()) + 1.0
            y0, y1 = float(ys.min()), float(ys.max()) + 1.0
    return np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)


def homography_from_plane(
    plane: PlaneEquation,
    width: int,
    height: int,
    floor_mask: Optional[np.ndarray] = None,
    cfg: HomographyConfig = HomographyConfig(),
) -> np.ndarray:
    """
    Approximate image -> floor-UV homography from the fitted depth plane.

    Steps:
    - pinhole camera at the image centre, focal = cfg.focal_scale * max(W, H)
    - back-project the 4 floor bounding-box corners using the plane's predicted depth
    - express the 3D corners in an orthonormal in-plane basis (u along image x,
      v increasing towards the bottom of the image)
    - DLT from the image corners to those in-plane coordinates

    Falls back to identity when the plane cannot support the construction.
    """
    w, h = int(width), int(height)
    if floor_mask is not None:
        require_size(floor_mask, w, h, "floor_mask")

    if plane.is_degenerate:
        logger.warning("homography_from_plane: degenerate plane %s; using identity", plane.as_tuple())
        return np.eye(3, dtype=np.float64)

    corners = _anchor_corners(w, h, floor_mask)
    if (corners[1, 0] - corners[0, 0]) < 1.0 or (corners[3, 1] - corners[0, 1]) < 1.0:
        return np.eye(3, dtype=np.float64)

    z = plane.depth_at(corners[:, 0], corners[:, 1])
    if not (np.isfinite(z).all() and (z > 0.0).all()):
        logger.warning("homography_from_plane: plane predicts non-positive depth at floor corners; using identity")
        return np.eye(3, dtype=np.float64)

    f = float(cfg.focal_scale) * float(max(w, h))
    cx, cy = w / 2.0, h / 2.0
    P = np.column_stack(((corners[:, 0] - cx) * z / f, (corners[:, 1] - cy) * z / f, z))
    P = P * float(cfg.uv_units_per_depth)

    centroid = P.mean(axis=0)
    _u, _s, vt = np.linalg.svd(P - centroid)
    n = vt[-1]

    e1 = np.array([1.0, 0.0, 0.0]) - n[0] * n
    if float(np.linalg.norm(e1)) < 1e-9:
        e1 = np.array([0.0, 1.0, 0.0]) - n[1] * n
    e1 = e1 / np.linalg.norm(e1)
    e2 = np.cross(n, e1)
    if float((P[3] - P[0]) @ e2) < 0.0:
        e2 = -e2

    rel = P - P[0]
    uv = np.column_stack((rel @ e1, rel @ e2))

    try:
        H = homography_from_correspondences(corners, uv)
    except InvalidInputError as e:
        logger.warning("homography_from_plane: %s; using identity", e)
        return np.eye(3, dtype=np.float64)

    logger.debug("homography_from_plane: focal=%.1f anchors=%s", f, corners.tolist())
    return H


def estimate_homography(
    plane: Optional[PlaneEquation] = None,
    correspondences: Optional[Tuple[Sequence, Sequence]] = None,
    *,
    width: Optional[int] = None,
    height: Optional[int] = None,
    floor_mask: Optional[np.ndarray] = None,
    cfg: HomographyConfig = HomographyConfig(),
) -> np.ndarray:
    """
    Dispatch between the two estimation modes.
    Correspondences (src, dst) win when both are given.
    """
    if correspondences is not None:
        try:
            src, dst = correspondences
        except (TypeError, ValueError) as e:
            raise InvalidInputError("correspondences must be a (src_points, dst_points) pair") from e
        return homography_from_correspondences(src, dst)

    if plane is None:
        raise InvalidInputError("estimate_homography needs a plane or 4 correspondences")
    if width is None or height is None:
        raise InvalidInputError("estimate_homography from a plane needs width and height")
    return homography_from_plane(plane, int(width), int(height), floor_mask=floor_mask, cfg=cfg)
