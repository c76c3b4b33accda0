"""
Plank tiling patterns evaluated in floor-UV space.

Pipeline per UV sample (vectorized over (...,2) arrays):
  uv' = scale * R(rotation) @ uv
  cell = floor(uv' / plank_size), local = frac(uv' / plank_size)
  sample = pattern-specific transform of local (wrapped by the texture sampler)
  seam   = darkening near the edges of the unshifted local coordinate
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Tuple, Union

import numpy as np

from floorviz.grids import InvalidInputError

JITTER = 0.02
SEAM_BAND = 0.015

# Darkest seam value per pattern (1.0 = no darkening).
_SEAM_MIN = {
    "random": 0.92,
    "brick": 0.92,
    "basket": 0.90,
    "herringbone": 0.88,
}


class PatternKind(Enum):
    RANDOM = "random"
    BRICK = "brick"
    HERRINGBONE = "herringbone"
    BASKET = "basket"

    @classmethod
    def parse(cls, value: Union[str, "PatternKind"]) -> "PatternKind":
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().lower()
        for kind in cls:
            if kind.value == name:
                return kind
        raise InvalidInputError(f"unknown pattern kind {value!r}; expected one of {[k.value for k in cls]}")


@dataclass(frozen=True)
class PlankSize:
    length: float = 1.0
    width: float = 0.2

    def as_array(self) -> np.ndarray:
        return np.array([self.length, self.width], dtype=np.float64)


@dataclass(frozen=True)
class PatternParams:
    pattern: PatternKind = PatternKind.RANDOM
    rotation: float = 0.0  # radians
    scale: float = 1.0
    plank_size: PlankSize = field(default_factory=PlankSize)
    seed: int = 0

    def __post_init__(self):
        object.__setattr__(self, "pattern", PatternKind.parse(self.pattern))
        if isinstance(self.plank_size, (tuple, list)):
            object.__setattr__(self, "plank_size", PlankSize(*self.plank_size))

        if not math.isfinite(float(self.rotation)):
            raise InvalidInputError("rotation must be finite")
        if not (math.isfinite(float(self.scale)) and float(self.scale) > 0.0):
            raise InvalidInputError(f"scale must be > 0, got {self.scale}")
        ps = self.plank_size
        if not all(math.isfinite(float(v)) and float(v) > 0.0 for v in (ps.length, ps.width)):
            raise InvalidInputError(f"plank size must be positive, got {ps}")

    @classmethod
    def from_degrees(cls, pattern="random", rotation_deg: float = 0.0, scale: float = 1.0,
                     plank_length: float = 1.0, plank_width: float = 0.2, seed: int = 0) -> "PatternParams":
        """UI-style constructor: rotation in degrees, plank size as two numbers."""
        return cls(
            pattern=PatternKind.parse(pattern),
            rotation=math.radians(float(rotation_deg)),
            scale=float(scale),
            plank_size=PlankSize(float(plank_length), float(plank_width)),
            seed=int(seed),
        )

    @property
    def rotation_deg(self) -> float:
        return math.degrees(self.rotation)

    def with_changes(self, **changes) -> "PatternParams":
        return replace(self, **changes)


def cell_hash(cx, cy, seed: float = 0.0) -> np.ndarray:
    """Deterministic pseudo-random value in [0,1) per plank cell."""
    px = np.asarray(cx, dtype=np.float64) + float(seed)
    py = np.asarray(cy, dtype=np.float64) + float(seed)
    s = np.sin(px * 127.1 + py * 311.7) * 43758.5453
    return s - np.floor(s)


def rotate(uv: np.ndarray, angle) -> np.ndarray:
    """Rotate (...,2) points about the origin; angle may be a scalar or broadcast per point."""
    p = np.asarray(uv, dtype=np.float64)
    c = np.cos(angle)
    s = np.sin(angle)
    x, y = p[..., 0], p[..., 1]
    return np.stack((x * c - y * s, x * s + y * c), axis=-1)


def transform_uv(uv: np.ndarray, params: PatternParams) -> np.ndarray:
    """User rotation then uniform scale."""
    return rotate(uv, params.rotation) * float(params.scale)


def _jitter(cell: np.ndarray, seed: int) -> np.ndarray:
    jx = cell_hash(cell[..., 0], cell[..., 1], seed)
    jy = cell_hash(cell[..., 0] + 17.0, cell[..., 1] + 59.0, seed)
    return np.stack((jx, jy), axis=-1) * (2.0 * JITTER) - JITTER


def seam_factor(local: np.ndarray, kind: Union[PatternKind, str], band: float = SEAM_BAND) -> np.ndarray:
    """
    Seam darkening from the cell-local coordinate in [0,1)^2.
    1.0 in the plank interior, ramping (smoothstep) down to the pattern minimum at the edges.
    """
    k = PatternKind.parse(kind)
    loc = np.asarray(local, dtype=np.float64)
    edge = np.minimum(np.minimum(loc[..., 0], 1.0 - loc[..., 0]), np.minimum(loc[..., 1], 1.0 - loc[..., 1]))
    b = max(float(band), 1e-12)
    t = np.clip(edge / b, 0.0, 1.0)
    t = t * t * (3.0 - 2.0 * t)
    lo = _SEAM_MIN[k.value]
    return lo + (1.0 - lo) * t


def plank_coordinates(uv: np.ndarray, params: PatternParams) -> Tuple[np.ndarray, np.ndarray]:
    """
    Floor UV (...,2) -> (texture sample coordinate (...,2), seam factor (...)).

    Sample coordinates are not wrapped here; the texture sampler tiles them.
    """
    t = transform_uv(uv, params) / params.plank_size.as_array()
    cell = np.floor(t)
    local = t - cell

    kind = params.pattern
    sample = local.copy()

    if kind is PatternKind.RANDOM:
        sample = sample + _jitter(cell, params.seed)

    elif kind is PatternKind.BRICK:
        odd_row = np.mod(cell[..., 1], 2.0) > 0.5
        sample[..., 0] = np.where(odd_row, sample[..., 0] + 0.5, sample[..., 0])

    elif kind is PatternKind.HERRINGBONE:
        odd = np.mod(cell[..., 0] + cell[..., 1], 2.0) > 0.5
        angle = np.where(odd, math.pi / 4.0, -math.pi / 4.0)
        sample = rotate(sample - 0.5, angle) + 0.5
        sample = sample + _jitter(cell, params.seed)

    elif kind is PatternKind.BASKET:
        odd_row = np.mod(cell[..., 1], 2.0) > 0.5
        odd_col = np.mod(cell[..., 0], 2.0) > 0.5
        sample[..., 0] = np.where(odd_row, sample[..., 0] + 0.5, sample[..., 0])
        sample[..., 1] = np.where(odd_col, sample[..., 1] + 0.5, sample[..., 1])

    return sample, seam_factor(local, kind)
