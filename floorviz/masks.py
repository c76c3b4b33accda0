"""
Mask Builder: segmentation results -> binary floor / furniture masks.

Label classification is a static keyword table with one documented rule:
case-insensitive substring match, floor vocabulary checked first (a label that
matches both vocabularies is floor).
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import cv2
import numpy as np

from floorviz.config import MaskConfig
from floorviz.grids import MaskDecodeError, as_u8_mask, require_size

logger = logging.getLogger(__name__)


class SegmentClass(Enum):
    FLOOR = "floor"
    FURNITURE = "furniture"
    OTHER = "other"


FLOOR_KEYWORDS: tuple[str, ...] = (
    "floor",
    "flooring",
    "ground",
    "pavement",
    "road",
    "carpet",
    "rug",
    "tile",
    "wood",
    "parquet",
    "linoleum",
    "vinyl",
)

FURNITURE_KEYWORDS: tuple[str, ...] = (
    "cabinet",
    "table",
    "chair",
    "sofa",
    "couch",
    "bed",
    "appliance",
    "toilet",
    "sink",
    "counter",
    "desk",
    "nightstand",
    "refrigerator",
    "stove",
    "oven",
    "dishwasher",
    "washer",
    "dresser",
    "wardrobe",
    "chest of drawers",
    "shelf",
    "bookcase",
    "ottoman",
    "stool",
    "bench",
    "armchair",
    "cushion",
    "lamp",
    "plant",
    "person",
)

MaskData = Union[np.ndarray, str, bytes]


@dataclass(frozen=True)
class SegmentationResult:
    label: str
    score: float
    mask: Any  # dense grid, or base64 PNG (str/bytes)

    @classmethod
    def from_dict(cls, item: Mapping[str, Any]) -> "SegmentationResult":
        return cls(label=str(item["label"]), score=float(item.get("score") or 0.0), mask=item["mask"])


@dataclass(frozen=True)
class MaskSet:
    floor_mask: np.ndarray      # (H,W) uint8 {0,255}
    furniture_mask: np.ndarray  # (H,W) uint8 {0,255}
    used_fallback: bool = False


def classify_label(label: str) -> SegmentClass:
    name = str(label or "").strip().lower()
    if not name:
        return SegmentClass.OTHER
    if any(k in name for k in FLOOR_KEYWORDS):
        return SegmentClass.FLOOR
    if any(k in name for k in FURNITURE_KEYWORDS):
        return SegmentClass.FURNITURE
    return SegmentClass.OTHER


def _decode_png_b64(data: Union[str, bytes]) -> np.ndarray:
    if isinstance(data, str):
        # Accept data URLs as produced by browsers: "data:image/png;base64,...."
        if data.startswith("data:"):
            data = data.split(",", 1)[-1]
        try:
            raw_b64 = data.encode("ascii")
        except UnicodeEncodeError as e:
            raise MaskDecodeError(f"mask is not valid base64: {e}") from e
    else:
        raw_b64 = data
    try:
        raw = base64.b64decode(raw_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MaskDecodeError(f"mask is not valid base64: {e}") from e

    img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise MaskDecodeError("mask bytes are not a decodable image")
    return img


def decode_segment_mask(mask: MaskData, width: int, height: int, *, threshold: int = 128) -> np.ndarray:
    """
    Decode one segment mask to a (height,width) uint8 {0,255} grid.

    Accepted inputs:
    - base64 PNG (str/bytes, optionally a data URL)
    - 2-D intensity grid (0..255, or 0..1 floats)
    - 3-channel grid (first channel is used) or 4-channel grid (alpha is used)

    Raises MaskDecodeError on anything else, including a size mismatch.
    """
    if isinstance(mask, (str, bytes)):
        arr = _decode_png_b64(mask)
    else:
        try:
            arr = np.asarray(mask)
        except (TypeError, ValueError) as e:
            raise MaskDecodeError(f"mask is not array-like: {e}") from e

    if arr.dtype == object or arr.ndim not in (2, 3) or arr.size == 0:
        raise MaskDecodeError(f"unsupported mask shape/dtype: {arr.shape} {arr.dtype}")

    if arr.ndim == 3:
        arr = arr[..., 3] if arr.shape[2] == 4 else arr[..., 0]

    if arr.shape != (int(height), int(width)):
        raise MaskDecodeError(f"mask is {arr.shape[1]}x{arr.shape[0]}, expected {int(width)}x{int(height)}")

    vals = arr.astype(np.float32)
    if np.issubdtype(arr.dtype, np.floating) and arr.size and float(np.nanmax(vals)) <= 1.0:
        vals = vals * 255.0
    return (np.nan_to_num(vals, nan=0.0) > float(threshold)).astype(np.uint8) * 255


def _square_kernel(ksize: int) -> np.ndarray:
    k = max(1, int(ksize)) | 1
    return np.ones((k, k), dtype=np.uint8)


def erode(mask: np.ndarray, ksize: int = 3) -> np.ndarray:
    """Binary erosion with a square kernel; pixels outside the image do not erode."""
    return cv2.erode(as_u8_mask(mask), _square_kernel(ksize))


def dilate(mask: np.ndarray, ksize: int = 3) -> np.ndarray:
    """Binary dilation with a square kernel; pixels outside the image do not dilate."""
    return cv2.dilate(as_u8_mask(mask), _square_kernel(ksize))


def open_mask(mask: np.ndarray, ksize: int = 3) -> np.ndarray:
    return dilate(erode(mask, ksize), ksize)


def close_mask(mask: np.ndarray, ksize: int = 3) -> np.ndarray:
    return erode(dilate(mask, ksize), ksize)


def remove_isolated_pixels(mask: np.ndarray) -> np.ndarray:
    """
    Opening step used on the floor mask:
    keep an "on" pixel only if at least one of its 8 neighbours is also on.
    """
    m = as_u8_mask(mask)
    on = (m > 0).astype(np.float32)
    ring = np.ones((3, 3), dtype=np.float32)
    ring[1, 1] = 0.0
    neighbours = cv2.filter2D(on, -1, ring, borderType=cv2.BORDER_CONSTANT)
    keep = (on > 0) & (neighbours > 0.5)
    return keep.astype(np.uint8) * 255


def largest_component(mask: np.ndarray) -> np.ndarray:
    """
    Keep only the largest 4-connected component.
    Ties keep the component whose first pixel comes first in raster order.
    """
    m = as_u8_mask(mask)
    n, labels, stats, _ = cv2.connectedComponentsWithStats(m, connectivity=4)
    if n <= 1:
        return np.zeros_like(m)

    areas = stats[1:, cv2.CC_STAT_AREA]
    best = 1 + int(np.argmax(areas))
    logger.debug("largest_component: %d components, keeping %d px", n - 1, int(areas[best - 1]))
    return (labels == best).astype(np.uint8) * 255


def fallback_floor_mask(width: int, height: int, *, start: float = 0.4) -> np.ndarray:
    """Deterministic default: every row with y / height > start is floor."""
    ys = np.arange(int(height), dtype=np.float64) / float(max(1, int(height)))
    rows = ys > float(start)
    out = np.zeros((int(height), int(width)), dtype=np.uint8)
    out[rows, :] = 255
    return out


def _iter_segments(segments: Optional[Iterable[Any]]) -> Iterable[SegmentationResult]:
    for i, seg in enumerate(segments or ()):
        if isinstance(seg, SegmentationResult):
            yield seg
            continue
        try:
            yield SegmentationResult.from_dict(seg)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("segment %d skipped: malformed entry (%s)", i, e)


def build_masks(
    segments: Optional[Sequence[Any]],
    width: int,
    height: int,
    cfg: MaskConfig = MaskConfig(),
) -> MaskSet:
    """
    Union floor-classified and furniture-classified segment masks, then clean them up.

    Floor: isolated-pixel removal + largest 4-connected component.
    Furniture: closing (dilate then erode).
    No floor-classified segment -> bottom-60% fallback floor.
    """
    w, h = int(width), int(height)
    floor = np.zeros((h, w), dtype=np.uint8)
    furniture = np.zeros((h, w), dtype=np.uint8)

    saw_floor_label = False
    used = {SegmentClass.FLOOR: 0, SegmentClass.FURNITURE: 0}

    for seg in _iter_segments(segments):
        cls = classify_label(seg.label)
        if cls is SegmentClass.OTHER:
            continue
        if cls is SegmentClass.FLOOR:
            saw_floor_label = True

        try:
            m = decode_segment_mask(seg.mask, w, h, threshold=cfg.decode_threshold)
        except MaskDecodeError as e:
            logger.warning("segment %r skipped: %s", seg.label, e)
            continue

        if cls is SegmentClass.FLOOR:
            np.maximum(floor, m, out=floor)
        else:
            np.maximum(furniture, m, out=furniture)
        used[cls] += 1

    logger.debug("build_masks: floor segments=%d furniture segments=%d", used[SegmentClass.FLOOR], used[SegmentClass.FURNITURE])

    if not saw_floor_label:
        logger.warning("no floor-labelled segment; using bottom-of-image fallback floor")
        floor_out = fallback_floor_mask(w, h, start=cfg.fallback_floor_start)
        used_fallback = True
    else:
        floor_out = floor
        if cfg.remove_isolated:
            floor_out = remove_isolated_pixels(floor_out)
        if cfg.keep_largest_component:
            floor_out = largest_component(floor_out)
        used_fallback = False

    furniture_out = furniture
    if int(cfg.close_radius) > 0:
        furniture_out = close_mask(furniture_out, 2 * int(cfg.close_radius) + 1)

    require_size(floor_out, w, h, "floor_mask")
    return MaskSet(floor_mask=floor_out, furniture_mask=furniture_out, used_fallback=used_fallback)
