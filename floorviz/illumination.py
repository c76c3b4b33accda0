"""
Illumination Extractor: photo luminance -> smooth multiplicative lighting map.

The map keeps broad shadows/highlights of the original floor so the new material
does not look pasted on. Values lie in [low, high] (default 0.8..1.2).
"""

from __future__ import annotations

import logging

import numpy as np

from floorviz.config import IlluminationConfig
from floorviz.grids import InvalidInputError, as_weight, require_same_size

logger = logging.getLogger(__name__)

# BGR order (OpenCV): weights for B, G, R.
_LUMA_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float64)


def luminance(photo_bgr: np.ndarray) -> np.ndarray:
    """0.299 R + 0.587 G + 0.114 B on a BGR image, float64 (H,W). Grayscale input passes through."""
    img = np.asarray(photo_bgr)
    if img.ndim == 2:
        return img.astype(np.float64)
    if img.ndim != 3 or img.shape[2] < 3:
        raise InvalidInputError(f"photo must be (H,W) or (H,W,3), got {img.shape}")
    return img[..., :3].astype(np.float64) @ _LUMA_BGR


def _box_blur_axis(values: np.ndarray, radius: int, axis: int) -> np.ndarray:
    """Mean over [i - radius, i + radius] along one axis, window clipped at the borders."""
    n = values.shape[axis]
    cs = np.cumsum(values, axis=axis)
    zero_shape = list(values.shape)
    zero_shape[axis] = 1
    cs = np.concatenate((np.zeros(zero_shape, dtype=cs.dtype), cs), axis=axis)

    idx = np.arange(n)
    lo = np.clip(idx - radius, 0, n)
    hi = np.clip(idx + radius + 1, 0, n)
    sums = np.take(cs, hi, axis=axis) - np.take(cs, lo, axis=axis)

    counts_shape = [1] * values.ndim
    counts_shape[axis] = n
    counts = (hi - lo).astype(np.float64).reshape(counts_shape)
    return sums / counts


def box_blur(values: np.ndarray, radius: int) -> np.ndarray:
    """Separable box blur: horizontal pass, then vertical pass."""
    v = np.asarray(values, dtype=np.float64)
    if v.ndim != 2:
        raise InvalidInputError(f"box_blur expects a 2-D grid, got {v.shape}")
    r = int(radius)
    if r <= 0 or v.size == 0:
        return v.copy()
    out = _box_blur_axis(v, r, axis=1)
    return _box_blur_axis(out, r, axis=0)


def normalize_illumination(values: np.ndarray, low: float = 0.8, high: float = 1.2) -> np.ndarray:
    """
    Min/max rescale to [low, high], returned as float32 (so the bounds are
    float32(low) and float32(high)).
    A flat field (max ~= min) maps to a constant 1.0.
    """
    v = np.asarray(values, dtype=np.float64)
    if v.size == 0:
        return v.astype(np.float32)
    vmin = float(v.min())
    vmax = float(v.max())
    rng = vmax - vmin
    # Cumulative-sum blurs leave rounding noise on constant fields.
    if not np.isfinite(rng) or rng <= 1e-9 * max(1.0, abs(vmax)):
        return np.ones(v.shape, dtype=np.float32)
    out = float(low) + (float(high) - float(low)) * (v - vmin) / rng
    return np.clip(out, float(low), float(high)).astype(np.float32)


def compute_illumination(
    photo_bgr: np.ndarray,
    floor_mask: np.ndarray,
    cfg: IlluminationConfig = IlluminationConfig(),
) -> np.ndarray:
    """
    Luminance restricted to the floor, blurred with a large box, normalized to [low, high].
    Returns float32 (H,W).
    """
    h, w = require_same_size(photo=photo_bgr, floor_mask=floor_mask)
    if not cfg.enabled:
        return np.ones((h, w), dtype=np.float32)

    lum = luminance(photo_bgr) * as_weight(floor_mask)
    blurred = box_blur(lum, cfg.blur_radius)
    out = normalize_illumination(blurred, cfg.low, cfg.high)
    logger.debug(
        "illumination: radius=%d blurred range=[%.2f, %.2f]",
        int(cfg.blur_radius), float(blurred.min()), float(blurred.max()),
    )
    return out
