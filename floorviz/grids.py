"""
Dense grid helpers shared by every pipeline stage.

Conventions:
- masks are uint8 (H,W) with values {0,255}
- depth / illumination are float (H,W)
- photos and materials are uint8 BGR (H,W,3)
"""

from __future__ import annotations

from typing import Tuple

import numpy as np


class FloorVizError(Exception):
    """Base class for pipeline errors."""


class InvalidInputError(FloorVizError, ValueError):
    pass


class DimensionMismatchError(FloorVizError, ValueError):
    pass


class MaskDecodeError(FloorVizError, ValueError):
    pass


def grid_size(grid: np.ndarray) -> Tuple[int, int]:
    """Return (height, width) of a 2-D or 3-D grid."""
    arr = np.asarray(grid)
    if arr.ndim not in (2, 3):
        raise DimensionMismatchError(f"Expected a 2-D or 3-D grid, got shape {arr.shape}")
    return int(arr.shape[0]), int(arr.shape[1])


def require_same_size(**grids: np.ndarray) -> Tuple[int, int]:
    """
    Fail fast when named grids disagree on (height, width).
    Returns the shared (height, width).
    """
    size = None
    first = None
    for name, grid in grids.items():
        hw = grid_size(grid)
        if size is None:
            size, first = hw, name
        elif hw != size:
            raise DimensionMismatchError(
                f"Grid size mismatch: {first} is {size[1]}x{size[0]} but {name} is {hw[1]}x{hw[0]} (WxH)"
            )
    if size is None:
        raise InvalidInputError("No grids given")
    return size


def require_size(grid: np.ndarray, width: int, height: int, name: str = "grid") -> None:
    hw = grid_size(grid)
    if hw != (int(height), int(width)):
        raise DimensionMismatchError(
            f"{name} is {hw[1]}x{hw[0]} but {int(width)}x{int(height)} (WxH) was expected"
        )


def as_bool_mask(mask: np.ndarray) -> np.ndarray:
    """
    Normalize a {0,255} / {0,1} / bool / float-weight mask to a bool grid.
    Floats in [0,1] are thresholded at 0.5; integer masks at > 0.
    """
    m = np.asarray(mask)
    if m.ndim == 3:
        m = m[..., 0]
    if m.dtype == bool:
        return m.copy()
    if np.issubdtype(m.dtype, np.floating):
        if m.size and float(np.nanmax(m)) > 1.0:
            return m > 127.5
        return m > 0.5
    return m > 0


def as_u8_mask(mask: np.ndarray) -> np.ndarray:
    return as_bool_mask(mask).astype(np.uint8) * 255


def as_weight(mask: np.ndarray) -> np.ndarray:
    """
    Mask as a float32 blend weight in [0,1].
    Integer masks are binary (on when > 0, so {0,1} and {0,255} agree);
    float masks stay soft and are clipped.
    """
    m = np.asarray(mask)
    if m.ndim == 3:
        m = m[..., 0]
    if m.dtype == bool:
        return m.astype(np.float32)
    if np.issubdtype(m.dtype, np.floating):
        if m.size and float(np.nanmax(m)) > 1.0:
            m = m / 255.0
        return np.clip(np.nan_to_num(m, nan=0.0), 0.0, 1.0).astype(np.float32)
    return as_bool_mask(m).astype(np.float32)


def readonly(arr: np.ndarray | None) -> np.ndarray | None:
    """Copy an array and mark the copy read-only."""
    if arr is None:
        return None
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out
