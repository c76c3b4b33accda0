"""
Pattern Compositor: per-pixel floor shading and blending over the photo.

Screen-space inputs (photo, masks, illumination) are sampled at the pixel itself;
only the material lookup goes through homography -> pattern -> texture.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Union

import numpy as np

from floorviz.grids import DimensionMismatchError, InvalidInputError, as_weight, require_same_size
from floorviz.homography import apply_homography
from floorviz.materials import MaterialTexture, load_material, sample_wrapped
from floorviz.patterns import PatternParams, plank_coordinates

logger = logging.getLogger(__name__)


def shade_pixels(
    xs: np.ndarray,
    ys: np.ndarray,
    homography: np.ndarray,
    material: Union[MaterialTexture, np.ndarray],
    params: PatternParams,
    illumination: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Shade arbitrary image-pixel positions.

    xs, ys: same-shape arrays of image coordinates (pixel centres are col + 0.5, row + 0.5).
    illumination: optional per-sample multiplier with the same shape.
    Returns float32 (*shape, 3) BGR = texture * seam * illumination, unclipped.
    Samples whose UV is not finite (homography maps them to infinity) come back as NaN.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    if xs.shape != ys.shape:
        raise DimensionMismatchError(f"xs and ys shapes differ: {xs.shape} vs {ys.shape}")

    uv = apply_homography(homography, np.stack((xs, ys), axis=-1))
    finite = np.isfinite(uv).all(axis=-1)
    uv = np.where(finite[..., None], uv, 0.0)

    sample, seam = plank_coordinates(uv, params)
    color = sample_wrapped(material, sample[..., 0], sample[..., 1])
    color = color * seam[..., None].astype(np.float32)

    if illumination is not None:
        illum = np.asarray(illumination, dtype=np.float32)
        if illum.shape != xs.shape:
            raise DimensionMismatchError(f"illumination shape {illum.shape} does not match samples {xs.shape}")
        color = color * illum[..., None]

    color[~finite] = np.nan
    return color


def _render_band(
    out: np.ndarray,
    photo_f: np.ndarray,
    weight: np.ndarray,
    illum: np.ndarray,
    homography: np.ndarray,
    material: MaterialTexture,
    params: PatternParams,
    r0: int,
    r1: int,
) -> None:
    w_band = weight[r0:r1]
    rows, cols = np.nonzero(w_band > 0.0)
    if len(rows) == 0:
        return

    xs = cols.astype(np.float64) + 0.5
    ys = (rows + r0).astype(np.float64) + 0.5
    shaded = shade_pixels(xs, ys, homography, material, params, illum[r0:r1][rows, cols])

    wt = w_band[rows, cols][:, None]
    src = photo_f[r0:r1][rows, cols]
    # Unmappable samples keep the photo.
    valid = np.isfinite(shaded).all(axis=1, keepdims=True)
    blended = np.where(valid, src * (1.0 - wt) + np.nan_to_num(shaded) * wt, src)

    band = out[r0:r1]
    band[rows, cols] = blended


def composite(
    photo: np.ndarray,
    homography: np.ndarray,
    illumination: np.ndarray,
    floor_mask: np.ndarray,
    occluder_mask: np.ndarray,
    material: Union[MaterialTexture, np.ndarray, str],
    params: PatternParams = PatternParams(),
    row_bands: int = 1,
) -> np.ndarray:
    """
    Blend the patterned material over the photo.

      weight = floor * (1 - occluder)
      out    = photo * (1 - weight) + material * seam * illumination * weight

    Pixels with weight 0 are returned untouched. Output is uint8 BGR (rounded, clipped).
    row_bands > 1 renders independent horizontal bands on a thread pool.
    """
    h, w = require_same_size(
        photo=photo, illumination=illumination, floor_mask=floor_mask, occluder_mask=occluder_mask
    )
    img = np.asarray(photo)
    if img.ndim != 3 or img.shape[2] != 3:
        raise InvalidInputError(f"photo must be (H,W,3) BGR, got {img.shape}")
    H = np.asarray(homography, dtype=np.float64)
    if H.shape != (3, 3):
        raise InvalidInputError(f"homography must be 3x3, got {H.shape}")

    tex = load_material(material)
    weight = as_weight(floor_mask) * (1.0 - as_weight(occluder_mask))
    illum = np.asarray(illumination, dtype=np.float32)
    if illum.ndim == 3:
        illum = illum[..., 0]

    photo_f = img.astype(np.float32)
    out = photo_f.copy()

    n_bands = max(1, min(int(row_bands), h))
    edges = np.linspace(0, h, n_bands + 1).astype(int)
    bands = [(int(edges[i]), int(edges[i + 1])) for i in range(n_bands) if edges[i + 1] > edges[i]]

    if len(bands) == 1:
        _render_band(out, photo_f, weight, illum, H, tex, params, 0, h)
    else:
        with ThreadPoolExecutor(max_workers=len(bands)) as pool:
            futures = [
                pool.submit(_render_band, out, photo_f, weight, illum, H, tex, params, r0, r1)
                for r0, r1 in bands
            ]
            for f in futures:
                f.result()

    logger.debug(
        "composite: %dx%d pattern=%s material=%s bands=%d blended=%d px",
        w, h, params.pattern.value, tex.id, len(bands), int(np.count_nonzero(weight)),
    )
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)
