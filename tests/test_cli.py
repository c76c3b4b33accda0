import json

import cv2
import numpy as np
import pytest
from PIL import Image

from floorviz.imaging import load_photo, resize_max_side, save_image, save_preview_gif
from floorviz.main import main, parse_args
from floorviz.scene import import_scene

from conftest import png_b64


@pytest.fixture
def inputs(tmp_path, room):
    photo_path = tmp_path / "room.png"
    cv2.imwrite(str(photo_path), room["photo"])

    seg_path = tmp_path / "segments.json"
    payload = [
        {"label": "floor", "score": 0.98, "mask": png_b64(room["floor"])},
        {"label": "sofa", "score": 0.91, "mask": png_b64(room["sofa"])},
    ]
    seg_path.write_text(json.dumps(payload), encoding="utf-8")

    depth_path = tmp_path / "depth.npy"
    np.save(str(depth_path), room["depth"])
    return {"photo": photo_path, "segments": seg_path, "depth": depth_path, "dir": tmp_path}


def test_parse_args_defaults():
    args = parse_args([])
    assert args.pattern == "random"
    assert args.rotation_deg == 0.0 and args.scale == 1.0
    assert args.photo is None and args.verbose == 0


def test_cli_end_to_end(inputs, room):
    out = inputs["dir"] / "out" / "floor.png"
    scene_path = inputs["dir"] / "scene.json"
    gif = inputs["dir"] / "sweep.gif"
    debug = inputs["dir"] / "debug"

    rc = main([
        "--photo", str(inputs["photo"]),
        "--segments", str(inputs["segments"]),
        "--depth", str(inputs["depth"]),
        "--material", "walnut-01",
        "--textures-dir", str(inputs["dir"] / "no_textures"),
        "--pattern", "basket",
        "--rotation-deg", "15",
        "--out", str(out),
        "--export-scene", str(scene_path),
        "--sweep-gif", str(gif),
        "--sweep-frames", "3",
        "--debug-dir", str(debug),
    ])
    assert rc == 0

    result = cv2.imread(str(out))
    assert result.shape == room["photo"].shape
    assert np.array_equal(result[:10], room["photo"][:10])
    assert not np.array_equal(result[17:], room["photo"][17:])

    scene = import_scene(scene_path.read_text(encoding="utf-8"), room["photo"])
    assert scene.material_id == "walnut-01"
    assert scene.params.pattern.value == "basket"
    assert scene.params.rotation_deg == pytest.approx(15.0)

    with Image.open(gif) as im:
        assert im.n_frames == 3
    for name in ("floor_mask.png", "furniture_mask.png", "occluder_mask.png", "illumination.png", "depth.png", "panels.png"):
        assert (debug / name).exists()


def test_cli_photo_only_uses_fallback_floor(inputs, room):
    out = inputs["dir"] / "plain.png"
    assert main(["--photo", str(inputs["photo"]), "--out", str(out), "--material", "gray-lvp-01"]) == 0
    result = cv2.imread(str(out))
    # Bottom 60% is repainted, the top rows are untouched.
    assert np.array_equal(result[:8], room["photo"][:8])


def test_cli_missing_photo(tmp_path):
    with pytest.raises(FileNotFoundError):
        main(["--photo", str(tmp_path / "missing.jpg"), "--out", str(tmp_path / "x.png")])


def test_load_photo_and_resize(tmp_path):
    img = np.zeros((40, 80, 3), dtype=np.uint8)
    img[:, :, 1] = 200
    p = tmp_path / "a.png"
    cv2.imwrite(str(p), img)
    loaded = load_photo(p)
    assert np.array_equal(loaded, img)
    small = load_photo(p, max_side=20)
    assert small.shape == (10, 20, 3)
    assert resize_max_side(img, 0) is img


def test_save_image_float_map(tmp_path):
    p = save_image(tmp_path / "illum.png", np.full((2, 2), 1.0, dtype=np.float32))
    assert cv2.imread(str(p), cv2.IMREAD_GRAYSCALE).tolist() == [[128, 128], [128, 128]]


def test_save_preview_gif_requires_frames(tmp_path):
    with pytest.raises(ValueError):
        save_preview_gif(tmp_path / "x.gif", [])
