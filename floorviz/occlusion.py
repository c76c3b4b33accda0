from __future__ import annotations

import logging

import cv2
import numpy as np

from floorviz.config import OcclusionConfig
from floorviz.grids import as_bool_mask, as_u8_mask, require_same_size
from floorviz.plane import PlaneEquation

logger = logging.getLogger(__name__)


def dilate_mask(mask_u8: np.ndarray, *, ksize: int = 3, iters: int = 1) -> np.ndarray:
    """
    Expand a binary mask (0/255) with a square dilation.
    ksize=3 grows boundaries by exactly one pixel (8-neighbourhood).
    """
    m = as_u8_mask(mask_u8)
    if int(ksize) <= 1:
        return m
    k = int(ksize) | 1
    ker = cv2.getStructuringElement(cv2.MORPH_RECT, (k, k))
    return cv2.dilate(m, ker, iterations=max(1, int(iters)))


def depth_occlusion(
    floor_mask: np.ndarray,
    depth: np.ndarray,
    plane: PlaneEquation,
    threshold: float = 0.1,
) -> np.ndarray:
    """
    Floor pixels with something in front of the floor plane (0/255).

    Depth polarity: larger = farther. A pixel is occluded when
    depth < plane.depth_at(x, y) - threshold.
    Pixels with invalid depth (<= 0 or non-finite) are never depth-occluded.
    """
    h, w = require_same_size(floor_mask=floor_mask, depth=depth)
    if plane.is_degenerate:
        logger.warning("depth_occlusion: degenerate plane %s; depth test skipped", plane.as_tuple())
        return np.zeros((h, w), dtype=np.uint8)

    z = np.asarray(depth, dtype=np.float64)
    if z.ndim == 3:
        z = z[..., 0]

    ys, xs = np.mgrid[0:h, 0:w]
    expected = plane.depth_at(xs, ys)

    valid = np.isfinite(z) & (z > 0.0)
    with np.errstate(invalid="ignore"):
        nearer = (expected - z) > float(threshold)
    occ = as_bool_mask(floor_mask) & valid & nearer
    return occ.astype(np.uint8) * 255


def refine_occlusion_mask(
    floor_mask: np.ndarray,
    furniture_mask: np.ndarray,
    depth: np.ndarray,
    plane: PlaneEquation,
    threshold: float | None = None,
    cfg: OcclusionConfig = OcclusionConfig(),
) -> np.ndarray:
    """
    Final occluder mask: (depth test on floor pixels) OR furniture, then optional 3x3 dilation.
    `threshold` overrides cfg.threshold when given.
    """
    require_same_size(floor_mask=floor_mask, furniture_mask=furniture_mask, depth=depth)
    thr = cfg.threshold if threshold is None else float(threshold)

    by_depth = depth_occlusion(floor_mask, depth, plane, thr)
    occ = np.maximum(by_depth, as_u8_mask(furniture_mask))

    if cfg.edge_refinement:
        occ = dilate_mask(occ, ksize=cfg.dilate_ksize)

    logger.debug(
        "occlusion: depth-occluded=%d furniture=%d final=%d px",
        int(np.count_nonzero(by_depth)), int(np.count_nonzero(furniture_mask)), int(np.count_nonzero(occ)),
    )
    return occ


def visible_floor_mask(floor_mask: np.ndarray, occluder_mask: np.ndarray) -> np.ndarray:
    """Floor minus occluders (occlusion takes precedence over floor)."""
    require_same_size(floor_mask=floor_mask, occluder_mask=occluder_mask)
    vis = as_bool_mask(floor_mask) & ~as_bool_mask(occluder_mask)
    return vis.astype(np.uint8) * 255
