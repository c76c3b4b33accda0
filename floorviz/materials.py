"""
Tileable floor materials and wrap-around texture sampling.

Built-in materials load `<textures_dir>/<file>` when present and otherwise use a
procedurally drawn stand-in, so the pipeline always has something to render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

import cv2
import numpy as np

from floorviz.grids import InvalidInputError

logger = logging.getLogger(__name__)

# remap() limits each map dimension; flat sample lists are folded into rows of this width.
_REMAP_ROW = 4096


@dataclass(frozen=True)
class MaterialTexture:
    id: str
    name: str
    image: np.ndarray  # (h,w,3) uint8 BGR, tileable
    roughness: float = 0.5
    metalness: float = 0.0
    generated: bool = False

    def __post_init__(self):
        img = np.asarray(self.image)
        if img.ndim == 2:
            img = cv2.cvtColor(img.astype(np.uint8), cv2.COLOR_GRAY2BGR)
        if img.ndim != 3 or img.shape[2] < 3 or img.shape[0] < 1 or img.shape[1] < 1:
            raise InvalidInputError(f"material {self.id!r}: expected a BGR image, got {img.shape}")
        img = np.ascontiguousarray(img[..., :3])
        img.setflags(write=False)
        object.__setattr__(self, "image", img)

    @property
    def size(self) -> Tuple[int, int]:
        return int(self.image.shape[1]), int(self.image.shape[0])


def _hex_bgr(code: str) -> Tuple[int, int, int]:
    c = code.lstrip("#")
    r, g, b = int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16)
    return (b, g, r)


def _wrap_repeat01(x: np.ndarray) -> np.ndarray:
    """Wrap values into [0,1) for texture repeat mapping."""
    return x - np.floor(x)


def sample_wrapped(texture: Union[MaterialTexture, np.ndarray], u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """
    Bilinear sample of a tileable BGR texture at normalized (u, v), wrap addressing.
    u, v: same-shape arrays (any shape). Returns float32 (*shape, 3).

    Texel centres sit at (i + 0.5) / size, so a 1-texel-wide texture is constant.
    """
    tex = texture.image if isinstance(texture, MaterialTexture) else np.asarray(texture)
    if tex.ndim == 2:
        tex = tex[..., None].repeat(3, axis=2)
    tex_f = tex[..., :3].astype(np.float32)
    th, tw = tex_f.shape[:2]

    uu = np.asarray(u, dtype=np.float64)
    vv = np.asarray(v, dtype=np.float64)
    if uu.shape != vv.shape:
        raise InvalidInputError(f"u and v shapes differ: {uu.shape} vs {vv.shape}")
    shape = uu.shape
    n = int(uu.size)
    if n == 0:
        return np.zeros(shape + (3,), dtype=np.float32)

    map_x = (_wrap_repeat01(uu.ravel()) * tw - 0.5).astype(np.float32)
    map_y = (_wrap_repeat01(vv.ravel()) * th - 0.5).astype(np.float32)

    cols = min(n, _REMAP_ROW)
    rows = -(-n // cols)
    pad = rows * cols - n
    if pad:
        map_x = np.concatenate((map_x, np.zeros(pad, dtype=np.float32)))
        map_y = np.concatenate((map_y, np.zeros(pad, dtype=np.float32)))

    out = cv2.remap(
        tex_f,
        map_x.reshape(rows, cols),
        map_y.reshape(rows, cols),
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_WRAP,
    )
    return out.reshape(-1, 3)[:n].reshape(shape + (3,))


def solid_material(color_bgr=(128, 128, 128), *, material_id: str = "solid", size: int = 4) -> MaterialTexture:
    c = tuple(int(np.clip(x, 0, 255)) for x in color_bgr)
    img = np.empty((int(size), int(size), 3), dtype=np.uint8)
    img[:] = c
    return MaterialTexture(id=material_id, name=f"Solid {c}", image=img, generated=True)


# ---------------------------------------------------------------------------
# Procedural stand-ins
# ---------------------------------------------------------------------------

def _draw_grain(img: np.ndarray, rng: np.random.Generator, *, lines: int, color: str, thickness: int,
                amplitude: float, freq: float) -> None:
    h, w = img.shape[:2]
    for i in range(lines):
        y0 = i * h / lines + rng.uniform(0.0, 10.0)
        y1 = y0 + np.sin(i * freq) * amplitude
        cv2.line(img, (0, int(round(y0))), (w - 1, int(round(y1))), _hex_bgr(color), thickness, cv2.LINE_AA)


def _draw_patches(img: np.ndarray, rng: np.random.Generator, *, count: int, color: str,
                  min_size: float, max_size: float, round_: bool = False) -> None:
    h, w = img.shape[:2]
    for _ in range(count):
        x = int(rng.uniform(0, w))
        y = int(rng.uniform(0, h))
        s = int(rng.uniform(min_size, max_size))
        if round_:
            cv2.circle(img, (x, y), s, _hex_bgr(color), -1, cv2.LINE_AA)
        else:
            cv2.rectangle(img, (x, y), (x + s, y + s), _hex_bgr(color), -1)


def _draw_grid(img: np.ndarray, *, step: int, color: str, thickness: int) -> None:
    h, w = img.shape[:2]
    for x in range(0, w, step):
        cv2.line(img, (x, 0), (x, h - 1), _hex_bgr(color), thickness)
    for y in range(0, h, step):
        cv2.line(img, (0, y), (w - 1, y), _hex_bgr(color), thickness)


def generate_texture(kind: str, size: int = 512, seed: int = 0) -> np.ndarray:
    """Procedural BGR texture for the built-in material families (oak/walnut/gray/demo)."""
    rng = np.random.default_rng(seed)
    s = int(size)
    img = np.empty((s, s, 3), dtype=np.uint8)

    if kind == "oak":
        img[:] = _hex_bgr("#8B4513")
        _draw_grain(img, rng, lines=20, color="#654321", thickness=2, amplitude=15.0, freq=0.5)
        _draw_patches(img, rng, count=50, color="#A0522D", min_size=5, max_size=25)
    elif kind == "walnut":
        img[:] = _hex_bgr("#3E2723")
        _draw_grain(img, rng, lines=25, color="#1B0F0F", thickness=3, amplitude=20.0, freq=0.3)
        _draw_patches(img, rng, count=30, color="#5D4037", min_size=10, max_size=40, round_=True)
    elif kind == "gray":
        img[:] = _hex_bgr("#808080")
        _draw_grid(img, step=40, color="#696969", thickness=1)
        _draw_patches(img, rng, count=100, color="#A9A9A9", min_size=5, max_size=20)
    else:
        img[:] = _hex_bgr("#D2B48C")
        _draw_grid(img, step=60, color="#A0522D", thickness=2)
        _draw_patches(img, rng, count=80, color="#CD853F", min_size=10, max_size=35)
    return img


@dataclass(frozen=True)
class MaterialSpec:
    id: str
    name: str
    filename: str
    kind: str
    roughness: float
    metalness: float


BUILTIN_MATERIALS: Tuple[MaterialSpec, ...] = (
    MaterialSpec("oak-01", "Oak Wood", "oak.jpg", "oak", 0.8, 0.0),
    MaterialSpec("walnut-01", "Walnut", "walnut.jpg", "walnut", 0.7, 0.0),
    MaterialSpec("gray-lvp-01", "Gray LVP", "gray-lvp.jpg", "gray", 0.3, 0.1),
    MaterialSpec("demo-laminate-01", "Demo Laminate", "demo-laminate.jpg", "demo", 0.5, 0.0),
)

# Plain brown used when a requested material does not exist.
FALLBACK_COLOR_BGR = _hex_bgr("#8B4513")


def read_texture(path: Union[str, Path]) -> Optional[np.ndarray]:
    """BGR image or None (unicode-safe read)."""
    p = str(path)
    img = cv2.imread(p, cv2.IMREAD_COLOR)
    if img is not None:
        return img
    try:
        data = np.fromfile(p, dtype=np.uint8)
    except OSError:
        return None
    if data.size == 0:
        return None
    return cv2.imdecode(data, cv2.IMREAD_COLOR)


class MaterialLibrary:
    """
    Lazily loaded material catalogue keyed by id.
    """

    def __init__(self, textures_dir: Union[str, Path, None] = "textures", *, procedural_size: int = 512,
                 specs: Iterable[MaterialSpec] = BUILTIN_MATERIALS):
        self.textures_dir = Path(textures_dir) if textures_dir is not None else None
        self.procedural_size = int(procedural_size)
        self._specs: Dict[str, MaterialSpec] = {s.id: s for s in specs}
        self._cache: Dict[str, MaterialTexture] = {}

    def ids(self) -> list[str]:
        return sorted(set(self._specs) | set(self._cache))

    def __contains__(self, material_id: str) -> bool:
        return material_id in self._specs or material_id in self._cache

    def register(self, texture: MaterialTexture) -> None:
        self._cache[texture.id] = texture

    def _load_spec(self, spec: MaterialSpec) -> MaterialTexture:
        img = None
        if self.textures_dir is not None:
            path = self.textures_dir / spec.filename
            if path.exists():
                img = read_texture(path)
                if img is None:
                    logger.warning("material %s: could not decode %s", spec.id, path)
        if img is None:
            logger.info("material %s: using generated %s texture", spec.id, spec.kind)
            return MaterialTexture(
                id=spec.id,
                name=f"{spec.name} (Generated)",
                image=generate_texture(spec.kind, self.procedural_size),
                roughness=spec.roughness,
                metalness=spec.metalness,
                generated=True,
            )
        return MaterialTexture(id=spec.id, name=spec.name, image=img, roughness=spec.roughness, metalness=spec.metalness)

    def get(self, material_id: str) -> MaterialTexture:
        """
        Material by id. Unknown ids log an error and return a plain brown material
        instead of failing the render.
        """
        if material_id in self._cache:
            return self._cache[material_id]
        spec = self._specs.get(material_id)
        if spec is None:
            logger.error("material %r not found; using fallback", material_id)
            return solid_material(FALLBACK_COLOR_BGR, material_id="fallback")
        tex = self._load_spec(spec)
        self._cache[material_id] = tex
        return tex


def load_material(material: Union[str, Path, MaterialTexture, np.ndarray], library: Optional[MaterialLibrary] = None) -> MaterialTexture:
    """
    Resolve a material reference: MaterialTexture, raw BGR array, library id, or image path.
    """
    if isinstance(material, MaterialTexture):
        return material
    if isinstance(material, np.ndarray):
        return MaterialTexture(id="custom", name="Custom", image=material)

    lib = library if library is not None else MaterialLibrary()
    key = str(material)
    if key in lib:
        return lib.get(key)

    path = Path(key)
    if path.suffix and path.exists():
        img = read_texture(path)
        if img is None:
            raise InvalidInputError(f"Could not decode material image: {path}")
        return MaterialTexture(id=path.stem, name=path.stem, image=img)

    return lib.get(key)
