"""
Hosted segmentation / depth collaborators.

The compositing core never calls these; the CLI uses them to turn a photo into
(segments, depth) before handing both to build_scene().
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional

import cv2
import numpy as np
import requests

from floorviz.config import InferenceConfig, get_inference_token
from floorviz.grids import FloorVizError, InvalidInputError
from floorviz.masks import SegmentationResult

logger = logging.getLogger(__name__)

# Relative depth from disparity is spread over this range (metres-like units).
NEAR_DEPTH = 2.0
FAR_DEPTH = 10.0


class InferenceError(FloorVizError):
    """A hosted model call failed or returned something unusable."""


def parse_segmentation_payload(payload: Any) -> List[SegmentationResult]:
    """
    Hosted segmentation JSON -> SegmentationResult list.
    Expected: [{"label": str, "score": float, "mask": <base64 PNG>}, ...]
    Malformed entries are skipped; an {"error": ...} object raises InferenceError.
    """
    if isinstance(payload, dict):
        if "error" in payload:
            raise InferenceError(f"segmentation endpoint error: {payload['error']}")
        payload = [payload]
    if not isinstance(payload, list):
        raise InferenceError(f"unexpected segmentation payload type: {type(payload).__name__}")

    out: List[SegmentationResult] = []
    for i, item in enumerate(payload):
        try:
            out.append(SegmentationResult.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("segmentation item %d skipped: %s", i, e)
    return out


def decode_depth_png(data: bytes) -> np.ndarray:
    """Depth image bytes (8/16-bit PNG) -> float32 (H,W) raw values."""
    buf = np.frombuffer(bytes(data), dtype=np.uint8)
    if buf.size == 0:
        raise InvalidInputError("empty depth image")
    img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise InvalidInputError("depth bytes are not a decodable image")
    if img.ndim == 3:
        img = img[..., 0]
    return img.astype(np.float32)


def resample_depth(depth: np.ndarray, width: int, height: int) -> np.ndarray:
    """Bilinear resize to (height, width); a same-size grid is returned as a float32 copy."""
    z = np.asarray(depth, dtype=np.float32)
    if z.ndim == 3:
        z = z[..., 0]
    if z.shape == (int(height), int(width)):
        return z.copy()
    return cv2.resize(z, (int(width), int(height)), interpolation=cv2.INTER_LINEAR)


def to_metric_like_depth(disparity: np.ndarray, near: float = NEAR_DEPTH, far: float = FAR_DEPTH) -> np.ndarray:
    """
    Convert relative inverse depth (larger = nearer) to the pipeline's polarity
    (larger = farther), spread linearly over [near, far].

    Non-positive / non-finite disparity becomes 0 (invalid depth).
    A flat disparity field maps to the mid depth.
    """
    d = np.asarray(disparity, dtype=np.float64)
    valid = np.isfinite(d) & (d > 0.0)
    out = np.zeros(d.shape, dtype=np.float32)
    if not valid.any():
        return out

    lo = float(d[valid].min())
    hi = float(d[valid].max())
    if hi - lo <= 0.0:
        out[valid] = 0.5 * (near + far)
        return out

    t = (d[valid] - lo) / (hi - lo)
    out[valid] = (near + (far - near) * (1.0 - t)).astype(np.float32)
    return out


class InferenceClient:
    """
    Thin client for the hosted models.

    session: a requests.Session (or anything with .post) so tests can stub the network.
    """

    def __init__(
        self,
        cfg: InferenceConfig = InferenceConfig(),
        session: Optional[requests.Session] = None,
        *,
        token: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg
        self.session = session if session is not None else requests.Session()
        self.token = token if token is not None else get_inference_token()
        self._sleep = sleep

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _post(self, model: str, image_bytes: bytes) -> requests.Response:
        url = f"{self.cfg.base_url.rstrip('/')}/{model}"
        try:
            resp = self.session.post(url, headers=self._headers(), data=image_bytes, timeout=self.cfg.timeout_s)
            if resp.status_code == 503:
                logger.info("%s is loading; retrying in %.0fs", model, self.cfg.loading_retry_wait_s)
                self._sleep(self.cfg.loading_retry_wait_s)
                resp = self.session.post(url, headers=self._headers(), data=image_bytes, timeout=self.cfg.timeout_s)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise InferenceError(f"{model} request failed: {e}") from e
        return resp

    def segment(self, image_bytes: bytes) -> List[SegmentationResult]:
        resp = self._post(self.cfg.segmentation_model, image_bytes)
        try:
            payload = resp.json()
        except ValueError as e:
            raise InferenceError(f"segmentation response is not JSON: {e}") from e
        segments = parse_segmentation_payload(payload)
        logger.info("segmentation: %d segments (%s)", len(segments), ", ".join(s.label for s in segments))
        return segments

    def depth(self, image_bytes: bytes, width: Optional[int] = None, height: Optional[int] = None) -> np.ndarray:
        """
        Depth grid in pipeline polarity, resampled to (height, width) when both are given.
        """
        resp = self._post(self.cfg.depth_model, image_bytes)
        try:
            raw = decode_depth_png(resp.content)
        except InvalidInputError as e:
            raise InferenceError(f"depth response: {e}") from e
        if width is not None and height is not None:
            raw = resample_depth(raw, width, height)
        if self.cfg.depth_is_disparity:
            return to_metric_like_depth(raw)
        return raw
