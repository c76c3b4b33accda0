import cv2
import numpy as np
import pytest

from floorviz.grids import InvalidInputError
from floorviz.materials import (
    BUILTIN_MATERIALS,
    FALLBACK_COLOR_BGR,
    MaterialLibrary,
    MaterialTexture,
    generate_texture,
    load_material,
    sample_wrapped,
    solid_material,
)


def _checker():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[0, 0] = (0, 0, 0)
    img[0, 1] = (100, 100, 100)
    img[1, 0] = (200, 200, 200)
    img[1, 1] = (40, 40, 40)
    return img


def test_sample_at_texel_centres():
    tex = _checker()
    out = sample_wrapped(tex, np.array([0.25, 0.75, 0.25]), np.array([0.25, 0.25, 0.75]))
    assert np.allclose(out[:, 0], [0, 100, 200])


def test_sample_wraps_instead_of_clamping():
    tex = _checker()
    a = sample_wrapped(tex, np.array([0.25, 0.75]), np.array([0.25, 0.25]))
    b = sample_wrapped(tex, np.array([3.25, -1.25]), np.array([-2.75, 5.25]))
    assert np.allclose(a, b)
    # At u = 0 the bilinear filter straddles the seam between the last and first texel.
    edge = sample_wrapped(tex, np.array([0.0]), np.array([0.25]))
    assert edge[0, 0] == pytest.approx(50.0)


def test_sample_keeps_input_shape():
    out = sample_wrapped(solid_material((1, 2, 3)), np.zeros((3, 5)), np.zeros((3, 5)))
    assert out.shape == (3, 5, 3)
    assert np.allclose(out[..., 2], 3.0)


def test_sample_many_points():
    u = np.linspace(-3, 3, 10_000)
    out = sample_wrapped(solid_material((9, 9, 9)), u, u[::-1])
    assert out.shape == (10_000, 3)
    assert np.allclose(out, 9.0)


def test_material_texture_validation():
    with pytest.raises(InvalidInputError):
        MaterialTexture(id="x", name="x", image=np.zeros((0, 3, 3), dtype=np.uint8))
    gray = MaterialTexture(id="g", name="g", image=np.full((4, 4), 7, dtype=np.uint8))
    assert gray.image.shape == (4, 4, 3)
    assert not gray.image.flags.writeable


def test_library_generates_missing_textures(tmp_path):
    lib = MaterialLibrary(tmp_path, procedural_size=64)
    assert lib.ids() == sorted(s.id for s in BUILTIN_MATERIALS)
    oak = lib.get("oak-01")
    assert oak.generated
    assert oak.image.shape == (64, 64, 3)
    assert lib.get("oak-01") is oak


def test_library_prefers_texture_files(tmp_path):
    img = np.full((8, 8, 3), (10, 20, 30), dtype=np.uint8)
    cv2.imwrite(str(tmp_path / "walnut.jpg"), img)
    tex = MaterialLibrary(tmp_path).get("walnut-01")
    assert not tex.generated
    assert tex.size == (8, 8)
    assert tex.roughness == pytest.approx(0.7)


def test_unknown_material_falls_back_to_brown(tmp_path, caplog):
    tex = MaterialLibrary(tmp_path).get("marble-99")
    assert tex.id == "fallback"
    assert tuple(int(v) for v in tex.image[0, 0]) == FALLBACK_COLOR_BGR
    assert "not found" in caplog.text


def test_load_material_from_path_and_array(tmp_path):
    p = tmp_path / "tile.png"
    cv2.imwrite(str(p), np.full((5, 7, 3), 33, dtype=np.uint8))
    tex = load_material(str(p), MaterialLibrary(tmp_path))
    assert tex.id == "tile" and tex.size == (7, 5)

    arr_tex = load_material(np.zeros((3, 3, 3), dtype=np.uint8))
    assert arr_tex.id == "custom"


@pytest.mark.parametrize("kind", ["oak", "walnut", "gray", "demo"])
def test_generated_textures_are_deterministic(kind):
    a = generate_texture(kind, 32, seed=1)
    b = generate_texture(kind, 32, seed=1)
    assert a.shape == (32, 32, 3)
    assert np.array_equal(a, b)
