import argparse
import json
import logging
import math
import os
from dataclasses import replace
from pathlib import Path
from typing import Optional

import numpy as np

from floorviz.config import InferenceConfig, VisualizeConfig
from floorviz.imaging import encode_jpeg, load_photo, save_image, save_preview_gif, stack_debug_panels
from floorviz.inference import (
    InferenceClient,
    decode_depth_png,
    parse_segmentation_payload,
    resample_depth,
    to_metric_like_depth,
)
from floorviz.materials import MaterialLibrary, load_material
from floorviz.patterns import PatternKind, PatternParams
from floorviz.scene import SceneState, build_scene, export_scene, render_scene


def _read_segments_or_raise(path: str) -> list:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Could not read: {path}")
    with p.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    return parse_segmentation_payload(payload)


def _read_depth_or_raise(path: str, width: int, height: int, is_disparity: bool) -> np.ndarray:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Could not read: {path}")
    if p.suffix.lower() == ".npy":
        raw = np.load(str(p)).astype(np.float32)
    else:
        raw = decode_depth_png(p.read_bytes())
    depth = resample_depth(raw, width, height)
    if is_disparity:
        depth = to_metric_like_depth(depth)
    return depth


def _write_debug(scene: SceneState, debug_dir: str) -> None:
    os.makedirs(debug_dir, exist_ok=True)
    save_image(os.path.join(debug_dir, "floor_mask.png"), scene.floor_mask)
    save_image(os.path.join(debug_dir, "furniture_mask.png"), scene.furniture_mask)
    save_image(os.path.join(debug_dir, "occluder_mask.png"), scene.occluder_mask)
    save_image(os.path.join(debug_dir, "illumination.png"), scene.illumination)

    z = np.asarray(scene.depth, dtype=np.float64)
    valid = np.isfinite(z) & (z > 0)
    vis = np.zeros(z.shape, dtype=np.uint8)
    if valid.any():
        lo, hi = float(z[valid].min()), float(z[valid].max())
        span = (hi - lo) or 1.0
        vis[valid] = np.clip(255.0 * (z[valid] - lo) / span, 0, 255).astype(np.uint8)
    save_image(os.path.join(debug_dir, "depth.png"), vis)

    strip = stack_debug_panels([scene.photo, scene.floor_mask, scene.occluder_mask, scene.illumination])
    save_image(os.path.join(debug_dir, "panels.png"), strip)
    print(f"[debug] wrote masks/illumination/depth to {debug_dir}")


def run_visualize(cfg: VisualizeConfig, params: PatternParams, inference_cfg: Optional[InferenceConfig] = None):
    """
    Photo (+ segments + depth) -> scene -> composited floor image.
    Optional extras: debug panels, rotation-sweep GIF, JSON scene export.
    """
    photo = load_photo(cfg.photo_path, max_side=cfg.max_side)
    h, w = photo.shape[:2]
    print(f"[photo] {cfg.photo_path} ({w}x{h})")

    if cfg.use_remote:
        client = InferenceClient(inference_cfg or InferenceConfig())
        data = encode_jpeg(photo)
        segments = client.segment(data)
        depth = client.depth(data, w, h)
        print(f"[remote] segments={len(segments)} depth={depth.shape[1]}x{depth.shape[0]}")
    else:
        segments = _read_segments_or_raise(cfg.segments_path) if cfg.segments_path else []
        depth = (
            _read_depth_or_raise(cfg.depth_path, w, h, cfg.depth_is_disparity)
            if cfg.depth_path
            else None
        )
        print(f"[inputs] segments={len(segments)} depth={'yes' if depth is not None else 'no'}")

    scene = build_scene(photo, segments, depth, params=params, material_id=cfg.material, seed=cfg.seed)
    a, b, c, d = scene.plane.as_tuple()
    print(f"[plane] a={a:.4f} b={b:.4f} c={c:.4f} d={d:.4f}")
    if scene.used_fallback_floor:
        print("[masks] no floor segment found; using bottom-of-image fallback")

    library = MaterialLibrary(cfg.textures_dir)
    tex = load_material(cfg.material, library)
    print(f"[material] {tex.id} ({tex.name})")
    library.register(tex)
    scene = scene.with_material(tex.id)

    out = render_scene(scene, library, row_bands=cfg.row_bands)
    save_image(cfg.output_path, out)
    print("Saved:", cfg.output_path)

    if cfg.debug_dir:
        _write_debug(scene, cfg.debug_dir)

    if cfg.sweep_gif_path:
        n = max(1, int(cfg.sweep_frames))
        frames = []
        for i in range(n):
            rot = params.rotation + 2.0 * math.pi * i / n
            frames.append(render_scene(scene.with_pattern(rotation=rot), library, row_bands=cfg.row_bands))
        save_preview_gif(cfg.sweep_gif_path, frames)
        print("Saved:", cfg.sweep_gif_path)

    if cfg.export_scene_path:
        p = Path(cfg.export_scene_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(export_scene(scene), encoding="utf-8")
        print("Saved:", cfg.export_scene_path)

    return out


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Preview a new floor covering on a room photo.")
    p.add_argument("--photo", type=str, default=None, help="Room photo (JPEG/PNG/HEIC).")
    p.add_argument("--segments", type=str, default=None, help="Segmentation JSON: [{label, score, mask}, ...]")
    p.add_argument("--remote", action="store_true", help="Call the hosted segmentation/depth models (needs HF_TOKEN).")
    p.add_argument("--depth", type=str, default=None, help="Depth map (.npy or PNG), larger = farther.")
    p.add_argument("--disparity", action="store_true", help="Depth file holds inverse depth (larger = nearer).")
    p.add_argument("--material", type=str, default=None, help="Material id (oak-01, walnut-01, ...) or image path.")
    p.add_argument("--textures_dir", "--textures-dir", type=str, default=None, help="Directory with material images.")
    p.add_argument("--pattern", type=str, default="random", choices=[k.value for k in PatternKind])
    p.add_argument("--rotation-deg", type=float, default=0.0, help="Pattern rotation in degrees.")
    p.add_argument("--scale", type=float, default=1.0, help="Pattern scale (larger = smaller planks).")
    p.add_argument("--plank-length", type=float, default=1.0)
    p.add_argument("--plank-width", type=float, default=0.2)
    p.add_argument("--seed", type=int, default=None, help="Pattern jitter + RANSAC seed.")
    p.add_argument("--max-side", type=int, default=None, help="Downsize so the longest side is at most this.")
    p.add_argument("--bands", type=int, default=None, help="Row bands rendered in parallel.")
    p.add_argument("--out", type=str, default=None, help="Output image path.")
    p.add_argument("--debug-dir", type=str, default=None, help="Write masks/illumination/depth here.")
    p.add_argument("--sweep-gif", type=str, default=None, help="Write a rotation-sweep preview GIF.")
    p.add_argument("--sweep-frames", type=int, default=None)
    p.add_argument("--export-scene", type=str, default=None, help="Write the scene as JSON.")
    p.add_argument("--verbose", "-v", action="count", default=0, help="-v for INFO logs, -vv for DEBUG.")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

    base = VisualizeConfig()
    cfg = VisualizeConfig(
        photo_path=(args.photo if args.photo is not None else base.photo_path),
        segments_path=(args.segments if args.segments is not None else base.segments_path),
        depth_path=(args.depth if args.depth is not None else base.depth_path),
        depth_is_disparity=(args.disparity or base.depth_is_disparity),
        use_remote=(args.remote or base.use_remote),
        material=(args.material if args.material is not None else base.material),
        textures_dir=(args.textures_dir if args.textures_dir is not None else base.textures_dir),
        output_path=(args.out if args.out is not None else base.output_path),
        debug_dir=(args.debug_dir if args.debug_dir is not None else base.debug_dir),
        sweep_gif_path=(args.sweep_gif if args.sweep_gif is not None else base.sweep_gif_path),
        sweep_frames=(args.sweep_frames if args.sweep_frames is not None else base.sweep_frames),
        export_scene_path=(args.export_scene if args.export_scene is not None else base.export_scene_path),
        max_side=(args.max_side if args.max_side is not None else base.max_side),
        row_bands=(args.bands if args.bands is not None else base.row_bands),
        seed=(args.seed if args.seed is not None else base.seed),
    )

    # Only fall back to the default sample inputs when the user did not point at a photo.
    if args.photo is not None:
        if args.segments is None:
            cfg = replace(cfg, segments_path=None)
        if args.depth is None:
            cfg = replace(cfg, depth_path=None)

    params = PatternParams.from_degrees(
        pattern=args.pattern,
        rotation_deg=args.rotation_deg,
        scale=args.scale,
        plank_length=args.plank_length,
        plank_width=args.plank_width,
        seed=cfg.seed or 0,
    )
    run_visualize(cfg, params)
    return 0
