import numpy as np
import pytest

from floorviz.config import MaskConfig
from floorviz.grids import MaskDecodeError
from floorviz.masks import (
    SegmentClass,
    build_masks,
    classify_label,
    close_mask,
    decode_segment_mask,
    dilate,
    erode,
    fallback_floor_mask,
    largest_component,
    open_mask,
    remove_isolated_pixels,
)

from conftest import png_b64


def _random_mask(seed, h=24, w=32, p=0.45):
    rng = np.random.default_rng(seed)
    return (rng.random((h, w)) < p).astype(np.uint8) * 255


@pytest.mark.parametrize(
    "label,expected",
    [
        ("floor", SegmentClass.FLOOR),
        ("Floor-Other", SegmentClass.FLOOR),
        ("CARPET", SegmentClass.FLOOR),
        ("rug", SegmentClass.FLOOR),
        ("chair", SegmentClass.FURNITURE),
        ("Coffee Table", SegmentClass.FURNITURE),
        ("sofa", SegmentClass.FURNITURE),
        ("wall", SegmentClass.OTHER),
        ("ceiling", SegmentClass.OTHER),
        ("", SegmentClass.OTHER),
    ],
)
def test_classify_label(label, expected):
    assert classify_label(label) is expected


def test_label_matching_both_vocabularies_is_floor():
    assert classify_label("wood cabinet") is SegmentClass.FLOOR


def test_decode_segment_mask_from_base64_png():
    m = np.zeros((4, 5), dtype=np.uint8)
    m[1:3, 2:4] = 200
    out = decode_segment_mask(png_b64(m), 5, 4)
    assert out.dtype == np.uint8
    assert set(np.unique(out)) == {0, 255}
    assert np.array_equal(out > 0, m > 128)


def test_decode_segment_mask_thresholds_strictly_above_128():
    m = np.array([[128, 129], [0, 255]], dtype=np.uint8)
    out = decode_segment_mask(m, 2, 2)
    assert out.tolist() == [[0, 255], [0, 255]]


def test_decode_segment_mask_uses_alpha_of_rgba():
    m = np.zeros((3, 3, 4), dtype=np.uint8)
    m[..., 0] = 255
    m[1, 1, 3] = 255
    out = decode_segment_mask(m, 3, 3)
    assert int(np.count_nonzero(out)) == 1 and out[1, 1] == 255


def test_decode_segment_mask_float_weights():
    m = np.array([[0.2, 0.9]], dtype=np.float32)
    assert decode_segment_mask(m, 2, 1).tolist() == [[0, 255]]


@pytest.mark.parametrize("bad", ["not base64 !!", "aGVsbG8=", np.zeros((3, 3)), None])
def test_decode_segment_mask_rejects_malformed(bad):
    with pytest.raises(MaskDecodeError):
        decode_segment_mask(bad, 4, 4)


def test_remove_isolated_pixels():
    m = np.zeros((6, 6), dtype=np.uint8)
    m[0, 5] = 255          # isolated
    m[3:5, 1:3] = 255      # 2x2 block survives
    out = remove_isolated_pixels(m)
    assert out[0, 5] == 0
    assert np.array_equal(out[3:5, 1:3], m[3:5, 1:3])
    assert int(np.count_nonzero(out)) == 4


def test_diagonal_neighbour_counts_for_isolated_check():
    m = np.zeros((4, 4), dtype=np.uint8)
    m[1, 1] = 255
    m[2, 2] = 255
    assert np.array_equal(remove_isolated_pixels(m), m)


def test_largest_component_uses_4_connectivity():
    m = np.zeros((5, 7), dtype=np.uint8)
    m[0, 0] = 255
    m[1, 1] = 255          # diagonal only: separate component
    m[2:5, 3:6] = 255      # 9 px
    out = largest_component(m)
    assert int(np.count_nonzero(out)) == 9
    assert out[0, 0] == 0 and out[1, 1] == 0


def test_largest_component_empty_mask():
    assert not largest_component(np.zeros((3, 3), dtype=np.uint8)).any()


@pytest.mark.parametrize("seed", range(5))
def test_largest_component_is_idempotent(seed):
    m = _random_mask(seed)
    once = largest_component(m)
    assert np.array_equal(largest_component(once), once)


@pytest.mark.parametrize("seed", range(5))
def test_morphological_ordering(seed):
    m = _random_mask(seed) > 0
    opened = open_mask(m) > 0
    closed = close_mask(m) > 0
    assert not (opened & ~m).any()
    assert not (m & ~closed).any()


def test_erode_dilate_single_block():
    m = np.zeros((7, 7), dtype=np.uint8)
    m[2:5, 2:5] = 255
    assert int(np.count_nonzero(erode(m))) == 1
    assert int(np.count_nonzero(dilate(m))) == 25


def test_fallback_floor_mask_rows():
    m = fallback_floor_mask(3, 10)
    rows_on = [int(y) for y in range(10) if m[y].all()]
    assert rows_on == [5, 6, 7, 8, 9]
    assert not m[:5].any()


def test_build_masks_without_floor_label_uses_fallback():
    h, w = 10, 4
    segs = [{"label": "wall", "score": 0.9, "mask": np.full((h, w), 255, dtype=np.uint8)}]
    out = build_masks(segs, w, h)
    assert out.used_fallback
    ys = np.arange(h) / h
    expected = np.repeat((ys > 0.4)[:, None], w, axis=1).astype(np.uint8) * 255
    assert np.array_equal(out.floor_mask, expected)
    assert not out.furniture_mask.any()


def test_build_masks_empty_list_uses_fallback():
    out = build_masks([], 5, 5)
    assert out.used_fallback
    assert out.floor_mask.shape == (5, 5)


def test_build_masks_unions_and_cleans(room):
    stray = np.zeros((room["h"], room["w"]), dtype=np.uint8)
    stray[2:4, 2:4] = 255  # small floor island far from the main floor
    segs = list(room["segments"]) + [{"label": "carpet", "score": 0.5, "mask": stray}]

    out = build_masks(segs, room["w"], room["h"])
    assert not out.used_fallback
    assert np.array_equal(out.floor_mask, room["floor"])
    assert np.array_equal(out.furniture_mask, room["sofa"])


def test_build_masks_skips_undecodable_segment(room, caplog):
    segs = list(room["segments"]) + [
        {"label": "table", "score": 0.4, "mask": "%%%"},
        {"label": "chair", "score": 0.4, "mask": np.zeros((3, 3), dtype=np.uint8)},
        {"score": 0.1},
    ]
    out = build_masks(segs, room["w"], room["h"])
    assert np.array_equal(out.furniture_mask, room["sofa"])
    assert "skipped" in caplog.text


def test_build_masks_furniture_closing_fills_pinholes():
    h, w = 12, 12
    chair = np.zeros((h, w), dtype=np.uint8)
    chair[2:9, 2:9] = 255
    chair[5, 5] = 0
    floor = np.full((h, w), 255, dtype=np.uint8)
    out = build_masks(
        [{"label": "floor", "mask": floor}, {"label": "chair", "mask": chair}],
        w, h, MaskConfig(close_radius=1),
    )
    assert out.furniture_mask[5, 5] == 255
    assert np.array_equal(out.furniture_mask > 0, np.pad(np.ones((7, 7), bool), ((2, 3), (2, 3))))
