"""
Scene state: one uploaded photo plus everything derived from it.

A SceneState is immutable. Changing pattern/material returns a new state; a new
photo means calling build_scene() again. Arrays are stored as read-only copies.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

import numpy as np

from floorviz.compositor import composite
from floorviz.config import HomographyConfig, IlluminationConfig, MaskConfig, OcclusionConfig, PlaneConfig
from floorviz.grids import InvalidInputError, grid_size, readonly, require_same_size
from floorviz.homography import estimate_homography
from floorviz.illumination import compute_illumination
from floorviz.masks import build_masks
from floorviz.materials import MaterialLibrary, load_material
from floorviz.occlusion import refine_occlusion_mask, visible_floor_mask
from floorviz.patterns import PatternKind, PatternParams, PlankSize
from floorviz.plane import PlaneEquation, fit_floor_plane

logger = logging.getLogger(__name__)

SCENE_FORMAT_VERSION = 1

_ARRAY_FIELDS = ("photo", "floor_mask", "furniture_mask", "occluder_mask", "depth", "illumination", "homography")


@dataclass(frozen=True)
class SceneState:
    photo: np.ndarray           # (H,W,3) uint8 BGR
    floor_mask: np.ndarray      # (H,W) uint8 {0,255}
    furniture_mask: np.ndarray  # (H,W) uint8 {0,255}
    occluder_mask: np.ndarray   # (H,W) uint8 {0,255}
    depth: np.ndarray           # (H,W) float32, larger = farther, <=0 invalid
    illumination: np.ndarray    # (H,W) float32 in [0.8, 1.2]
    plane: PlaneEquation
    homography: np.ndarray      # (3,3) float64
    params: PatternParams = field(default_factory=PatternParams)
    material_id: str = "oak-01"
    occlusion_threshold: float = 0.1
    used_fallback_floor: bool = False

    def __post_init__(self):
        for name in _ARRAY_FIELDS:
            object.__setattr__(self, name, readonly(getattr(self, name)))
        require_same_size(
            photo=self.photo,
            floor_mask=self.floor_mask,
            furniture_mask=self.furniture_mask,
            occluder_mask=self.occluder_mask,
            depth=self.depth,
            illumination=self.illumination,
        )

    @property
    def width(self) -> int:
        return grid_size(self.photo)[1]

    @property
    def height(self) -> int:
        return grid_size(self.photo)[0]

    def with_pattern(self, **changes) -> "SceneState":
        """New state with PatternParams fields replaced (pattern, rotation, scale, plank_size, seed)."""
        return replace(self, params=replace(self.params, **changes))

    def with_material(self, material_id: str) -> "SceneState":
        return replace(self, material_id=str(material_id))


def build_scene(
    photo: np.ndarray,
    segments: Optional[Sequence[Any]],
    depth: Optional[np.ndarray],
    *,
    params: PatternParams = PatternParams(),
    material_id: str = "oak-01",
    correspondences=None,
    mask_cfg: MaskConfig = MaskConfig(),
    plane_cfg: PlaneConfig = PlaneConfig(),
    homography_cfg: HomographyConfig = HomographyConfig(),
    illumination_cfg: IlluminationConfig = IlluminationConfig(),
    occlusion_cfg: OcclusionConfig = OcclusionConfig(),
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> SceneState:
    """
    Full data flow for one photo:
      masks -> plane -> homography -> illumination -> occluders.

    depth=None is allowed: the plane falls back to horizontal and only furniture occludes.
    correspondences=(src, dst) selects the 4-point DLT instead of the plane approximation.
    """
    h, w = grid_size(photo)

    if depth is None:
        z = np.zeros((h, w), dtype=np.float32)
    else:
        z = np.asarray(depth, dtype=np.float32)
        if z.ndim == 3:
            z = z[..., 0]
        require_same_size(photo=photo, depth=z)

    masks = build_masks(segments, w, h, mask_cfg)
    plane = fit_floor_plane(z, masks.floor_mask, plane_cfg, rng=rng, seed=seed)
    H = estimate_homography(
        plane,
        correspondences,
        width=w,
        height=h,
        floor_mask=masks.floor_mask,
        cfg=homography_cfg,
    )
    occ = refine_occlusion_mask(masks.floor_mask, masks.furniture_mask, z, plane, cfg=occlusion_cfg)
    # Furniture wins over floor on the stored masks.
    floor = visible_floor_mask(masks.floor_mask, masks.furniture_mask)
    illum = compute_illumination(photo, floor, illumination_cfg)

    logger.info(
        "scene %dx%d: floor=%d px furniture=%d px occluders=%d px fallback=%s",
        w, h,
        int(np.count_nonzero(floor)),
        int(np.count_nonzero(masks.furniture_mask)),
        int(np.count_nonzero(occ)),
        masks.used_fallback,
    )

    return SceneState(
        photo=photo,
        floor_mask=floor,
        furniture_mask=masks.furniture_mask,
        occluder_mask=occ,
        depth=z,
        illumination=illum,
        plane=plane,
        homography=H,
        params=params,
        material_id=material_id,
        occlusion_threshold=float(occlusion_cfg.threshold),
        used_fallback_floor=masks.used_fallback,
    )


def render_scene(scene: SceneState, library: Optional[MaterialLibrary] = None, row_bands: int = 1) -> np.ndarray:
    tex = load_material(scene.material_id, library)
    return composite(
        scene.photo,
        scene.homography,
        scene.illumination,
        scene.floor_mask,
        scene.occluder_mask,
        tex,
        scene.params,
        row_bands=row_bands,
    )


# ---------------------------------------------------------------------------
# JSON export / import
# ---------------------------------------------------------------------------

def rle_encode(mask: np.ndarray) -> list[list[int]]:
    """Row-major run-length encoding: [[value, count], ...] with value in {0, 255}."""
    flat = (np.asarray(mask).reshape(-1) > 0).astype(np.uint8) * 255
    if flat.size == 0:
        return []
    change = np.flatnonzero(np.diff(flat.astype(np.int16))) + 1
    starts = np.concatenate(([0], change))
    ends = np.concatenate((change, [flat.size]))
    return [[int(flat[s]), int(e - s)] for s, e in zip(starts, ends)]


def rle_decode(runs: Sequence[Sequence[int]], width: int, height: int) -> np.ndarray:
    """Inverse of rle_encode. Raises InvalidInputError when the runs do not cover width*height exactly."""
    total = int(width) * int(height)
    try:
        values = np.array([int(r[0]) for r in runs], dtype=np.int64)
        counts = np.array([int(r[1]) for r in runs], dtype=np.int64)
    except (TypeError, ValueError, IndexError) as e:
        raise InvalidInputError(f"malformed run-length data: {e}") from e
    if (counts < 0).any():
        raise InvalidInputError("run-length counts must be non-negative")
    if int(counts.sum()) != total:
        raise InvalidInputError(
            f"run-length data decodes to {int(counts.sum())} pixels, expected {total} ({int(width)}x{int(height)})"
        )
    flat = np.repeat(np.where(values > 0, 255, 0).astype(np.uint8), counts)
    return flat.reshape(int(height), int(width))


def export_scene(scene: SceneState) -> str:
    """
    JSON document with the derived geometry and the user controls.
    The photo itself is not embedded; illumination is recomputed on import.
    Invalid depth samples (non-finite) are written as 0.0.
    """
    depth = np.nan_to_num(np.asarray(scene.depth, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    p = scene.params
    doc = {
        "version": SCENE_FORMAT_VERSION,
        "width": scene.width,
        "height": scene.height,
        "masks": {
            "floor": rle_encode(scene.floor_mask),
            "furniture": rle_encode(scene.furniture_mask),
            "occluder": rle_encode(scene.occluder_mask),
        },
        "depth": [round(float(v), 6) for v in depth.reshape(-1)],
        "plane": list(scene.plane.as_tuple()),
        "homography": np.asarray(scene.homography, dtype=np.float64).tolist(),
        "controls": {
            "pattern": p.pattern.value,
            "rotation": p.rotation,
            "scale": p.scale,
            "plank_size": {"length": p.plank_size.length, "width": p.plank_size.width},
            "seed": p.seed,
            "material_id": scene.material_id,
            "occlusion_threshold": scene.occlusion_threshold,
        },
        "used_fallback_floor": scene.used_fallback_floor,
    }
    return json.dumps(doc)


def import_scene(
    text: str,
    photo: np.ndarray,
    illumination_cfg: IlluminationConfig = IlluminationConfig(),
) -> SceneState:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"scene is not valid JSON: {e}") from e

    try:
        version = int(doc.get("version", 0))
        width, height = int(doc["width"]), int(doc["height"])
        masks = doc["masks"]
        controls = doc.get("controls", {})
        plane_vals = [float(v) for v in doc["plane"]]
        H = np.asarray(doc["homography"], dtype=np.float64)
        depth_vals = np.asarray(doc["depth"], dtype=np.float32)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise InvalidInputError(f"scene document is missing or has malformed fields: {e}") from e

    if version != SCENE_FORMAT_VERSION:
        raise InvalidInputError(f"unsupported scene version {version}")
    ph, pw = grid_size(photo)
    if (pw, ph) != (width, height):
        raise InvalidInputError(f"photo is {pw}x{ph} but the scene was exported at {width}x{height}")
    if depth_vals.size != width * height:
        raise InvalidInputError(f"depth has {depth_vals.size} values, expected {width * height}")
    if H.shape != (3, 3) or len(plane_vals) != 4:
        raise InvalidInputError("scene plane/homography have the wrong shape")

    floor = rle_decode(masks["floor"], width, height)
    furniture = rle_decode(masks["furniture"], width, height)
    occluder = rle_decode(masks["occluder"], width, height)
    floor = visible_floor_mask(floor, furniture)

    ps = controls.get("plank_size", {})
    params = PatternParams(
        pattern=PatternKind.parse(controls.get("pattern", "random")),
        rotation=float(controls.get("rotation", 0.0)),
        scale=float(controls.get("scale", 1.0)),
        plank_size=PlankSize(float(ps.get("length", 1.0)), float(ps.get("width", 0.2))),
        seed=int(controls.get("seed", 0)),
    )

    return SceneState(
        photo=photo,
        floor_mask=floor,
        furniture_mask=furniture,
        occluder_mask=occluder,
        depth=depth_vals.reshape(height, width),
        illumination=compute_illumination(photo, floor, illumination_cfg),
        plane=PlaneEquation(*plane_vals),
        homography=H,
        params=params,
        material_id=str(controls.get("material_id", "oak-01")),
        occlusion_threshold=float(controls.get("occlusion_threshold", 0.1)),
        used_fallback_floor=bool(doc.get("used_fallback_floor", False)),
    )
