import os
from dataclasses import dataclass
from typing import Optional


def get_inference_token(env_var: str = "HF_TOKEN") -> Optional[str]:
    """
    Bearer token for the hosted segmentation/depth endpoints.

    Notes:
    - Read from the environment only; never stored in config objects or scene exports.
    - Empty strings count as "not set".
    """
    tok = os.environ.get(env_var, "").strip()
    return tok or None


@dataclass(frozen=True)
class MaskConfig:
    # Segment decode: pixel is "on" when its intensity/alpha is strictly above this (0..255 scale).
    decode_threshold: int = 128

    # Floor cleanup: drop isolated pixels, then keep the largest 4-connected component.
    remove_isolated: bool = True
    keep_largest_component: bool = True

    # Furniture cleanup: dilate-then-erode (closing) to fill pinholes.
    # Square kernel side = 2 * close_radius + 1.
    close_radius: int = 2

    # Used when no segment label matches the floor vocabulary:
    # rows with y / height > fallback_floor_start are floor (bottom 60%).
    fallback_floor_start: float = 0.4


@dataclass(frozen=True)
class PlaneConfig:
    # RANSAC
    iterations: int = 1000
    inlier_threshold: float = 0.1  # point-to-plane distance, depth units

    # Trials scored per vectorized batch (memory ~ batch * n_points floats).
    batch_size: int = 64

    # Re-estimate the plane from the winning inlier set (least squares).
    # Off by default: the returned plane is exactly the best RANSAC hypothesis.
    refine_with_inliers: bool = False


@dataclass(frozen=True)
class HomographyConfig:
    # Plane -> homography approximation: pinhole focal length as a fraction of max(W, H).
    focal_scale: float = 0.8

    # Floor-UV units per depth unit (1.0 keeps metric depth in metres).
    uv_units_per_depth: float = 1.0


@dataclass(frozen=True)
class IlluminationConfig:
    # "Shadow preservation". False -> constant neutral map (1.0).
    enabled: bool = True

    # Separable box blur half-width, pixels.
    blur_radius: int = 40

    # Multiplicative lighting range.
    low: float = 0.8
    high: float = 1.2


@dataclass(frozen=True)
class OcclusionConfig:
    # Floor pixel is occluded when its depth is nearer than the plane prediction by more than this.
    threshold: float = 0.1

    # Grow the occluder mask by one pixel (3x3) to hide seams at object boundaries.
    edge_refinement: bool = True
    dilate_ksize: int = 3


@dataclass(frozen=True)
class InferenceConfig:
    """
    Hosted model endpoints (collaborators, used only by the CLI).
    """
    base_url: str = "https://api-inference.huggingface.co/models"
    segmentation_model: str = "nvidia/segformer-b0-finetuned-ade-512-512"
    depth_model: str = "Intel/dpt-hybrid-midas"
    timeout_s: float = 60.0

    # HTTP 503 means the hosted model is still loading: wait this long and retry once.
    loading_retry_wait_s: float = 15.0

    # DPT/MiDaS return relative inverse depth (larger = nearer).
    depth_is_disparity: bool = True


@dataclass(frozen=True)
class VisualizeConfig:
    # Inputs
    photo_path: str = "data/room.jpg"
    segments_path: Optional[str] = "data/room_segments.json"
    depth_path: Optional[str] = "data/room_depth.npy"
    depth_is_disparity: bool = False
    use_remote: bool = False

    # Material: library id or image path
    material: str = "oak-01"
    textures_dir: str = "textures"

    # Outputs
    output_path: str = "outputs/room_floor.png"
    debug_dir: Optional[str] = None
    sweep_gif_path: Optional[str] = None
    sweep_frames: int = 24
    export_scene_path: Optional[str] = None

    # Optional working resolution: longest side in pixels (0 keeps the photo size).
    max_side: int = 0

    # Row bands rendered in parallel by the compositor.
    row_bands: int = 1

    # RANSAC seed (None -> nondeterministic).
    seed: Optional[int] = 0
