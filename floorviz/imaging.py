"""
Photo / image file I/O for the CLI.

Phones often save HEIC, sometimes under a .jpg name, so the loader sniffs the
header instead of trusting the extension.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import cv2
import numpy as np
import pillow_heif
from PIL import Image

PathLike = Union[str, Path]


def is_heic_by_signature(data: bytes) -> bool:
    # HEIC files carry ftypheic/ftyphevc/ftypmif1 in the header
    header = data[:64].lower()
    return b"ftypheic" in header or b"ftyphevc" in header or b"ftypmif1" in header


def _pil_to_bgr(img: Image.Image) -> np.ndarray:
    rgb = np.asarray(img.convert("RGB"), dtype=np.uint8)
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def load_photo(path: PathLike, max_side: int = 0) -> np.ndarray:
    """
    Read a photo as uint8 BGR.
    JPEG/PNG go through OpenCV; HEIC/HEIF (by signature or extension) through Pillow + pillow-heif.
    max_side > 0 downsizes so the longest side is at most max_side.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Could not read image: {p}")
    data = p.read_bytes()

    if is_heic_by_signature(data) or p.suffix.lower() in {".heic", ".heif"}:
        heif = pillow_heif.open_heif(data)
        pil = Image.frombytes(heif.mode, heif.size, heif.data, "raw", heif.mode, heif.stride)
        img = _pil_to_bgr(pil)
    else:
        img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            # Formats OpenCV does not handle (e.g. some WebP/GIF variants)
            try:
                img = _pil_to_bgr(Image.open(io.BytesIO(data)))
            except OSError as e:
                raise FileNotFoundError(f"Could not decode image: {p} ({e})") from e

    return resize_max_side(img, max_side)


def resize_max_side(img: np.ndarray, max_side: int) -> np.ndarray:
    if int(max_side) <= 0:
        return img
    h, w = img.shape[:2]
    longest = max(h, w)
    if longest <= int(max_side):
        return img
    s = float(max_side) / float(longest)
    size = (max(1, int(round(w * s))), max(1, int(round(h * s))))
    return cv2.resize(img, size, interpolation=cv2.INTER_AREA)


def encode_jpeg(img_bgr: np.ndarray, quality: int = 95) -> bytes:
    """JPEG bytes for upload to the hosted models."""
    ok, buf = cv2.imencode(".jpg", img_bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buf.tobytes()


def save_image(path: PathLike, img: np.ndarray) -> Path:
    """Write any uint8 grid (BGR or mask); float grids in [0,2] are scaled to 0..255 around 1.0 = 128."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    arr = np.asarray(img)
    if np.issubdtype(arr.dtype, np.floating):
        arr = np.clip(np.rint(arr * 127.5), 0, 255).astype(np.uint8)
    if not cv2.imwrite(str(out), arr):
        raise OSError(f"Could not write image: {out}")
    return out


def save_preview_gif(
    path: PathLike,
    frames_bgr: Iterable[np.ndarray],
    *,
    fps: int = 12,
    width: Optional[int] = 720,
) -> Path:
    """
    Animated GIF from BGR frames (e.g. a rotation sweep), adaptive palette per frame, looping.
    width: output width keeping aspect (None keeps the frame size).
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    images: list[Image.Image] = []
    for fr in frames_bgr:
        pil = Image.fromarray(cv2.cvtColor(fr, cv2.COLOR_BGR2RGB))
        if width is not None and pil.width > int(width):
            h = max(1, int(round(pil.height * int(width) / pil.width)))
            pil = pil.resize((int(width), h), Image.LANCZOS)
        images.append(pil.convert("P", palette=Image.ADAPTIVE))

    if not images:
        raise ValueError("save_preview_gif needs at least one frame")

    duration_ms = int(round(1000.0 / max(1, int(fps))))
    images[0].save(
        out,
        save_all=True,
        append_images=images[1:],
        duration=duration_ms,
        loop=0,
        optimize=False,
    )
    return out


def stack_debug_panels(panels: Sequence[np.ndarray]) -> np.ndarray:
    """Side-by-side BGR strip of same-height panels (masks are expanded to 3 channels)."""
    rows = []
    for p in panels:
        arr = np.asarray(p)
        if np.issubdtype(arr.dtype, np.floating):
            arr = np.clip(np.rint(arr * 127.5), 0, 255).astype(np.uint8)
        if arr.ndim == 2:
            arr = cv2.cvtColor(arr, cv2.COLOR_GRAY2BGR)
        rows.append(arr)
    return np.hstack(rows)
