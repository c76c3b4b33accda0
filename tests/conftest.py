import base64

import cv2
import numpy as np
import pytest


def png_b64(mask_u8: np.ndarray) -> str:
    ok, buf = cv2.imencode(".png", np.asarray(mask_u8, dtype=np.uint8))
    assert ok
    return base64.b64encode(buf.tobytes()).decode("ascii")


@pytest.fixture
def room():
    """
    30x20 synthetic room: bottom half floor, a furniture block on the floor,
    flat depth 5 with the block 1 unit nearer.
    """
    h, w = 20, 30
    photo = np.full((h, w, 3), 120, dtype=np.uint8)
    photo[:, :, 2] = np.linspace(60, 200, w, dtype=np.uint8)[None, :]

    floor = np.zeros((h, w), dtype=np.uint8)
    floor[10:, :] = 255

    sofa = np.zeros((h, w), dtype=np.uint8)
    sofa[12:16, 5:10] = 255

    depth = np.full((h, w), 5.0, dtype=np.float32)
    depth[12:16, 5:10] = 4.0

    segments = [
        {"label": "floor", "score": 0.98, "mask": png_b64(floor)},
        {"label": "sofa", "score": 0.91, "mask": sofa},
        {"label": "wall", "score": 0.95, "mask": 255 - floor},
    ]
    return {"photo": photo, "floor": floor, "sofa": sofa, "depth": depth, "segments": segments, "w": w, "h": h}
