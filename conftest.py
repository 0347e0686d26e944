"""Pytest fixtures: synthetic slide puzzles built in memory"""
import io

import cv2
import numpy as np
import pytest
from PIL import Image

SCENE_SIZE = (160, 100)
PIECE_X = 97
PIECE_Y = 41
PIECE_SIZE = 30


def encode_png(arr: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def make_scene(seed: int = 7) -> np.ndarray:
    """Cluttered RGB background with a distinctive motif at the piece slot."""
    rng = np.random.default_rng(seed)
    w, h = SCENE_SIZE
    img = np.full((h, w, 3), 90, dtype=np.uint8)
    for _ in range(25):
        x0 = int(rng.integers(0, w - 10))
        y0 = int(rng.integers(0, h - 10))
        x1 = x0 + int(rng.integers(6, 30))
        y1 = y0 + int(rng.integers(6, 30))
        color = [int(c) for c in rng.integers(0, 256, size=3)]
        cv2.rectangle(img, (x0, y0), (x1, y1), color, -1)

    # Dark pad wider than the piece so the motif's surroundings match the
    # cut-out exactly, then the motif itself.
    cv2.rectangle(
        img,
        (PIECE_X - 8, PIECE_Y - 8),
        (PIECE_X + PIECE_SIZE + 7, PIECE_Y + PIECE_SIZE + 7),
        (20, 20, 20),
        -1,
    )
    cx = PIECE_X + PIECE_SIZE // 2
    cy = PIECE_Y + PIECE_SIZE // 2
    cv2.circle(img, (cx, cy), 7, (255, 255, 255), -1)
    cv2.rectangle(
        img,
        (PIECE_X + 7, PIECE_Y + 23),
        (PIECE_X + 22, PIECE_Y + 24),
        (230, 230, 230),
        -1,
    )
    return img


def piece_patch(scene: np.ndarray, size: int = PIECE_SIZE) -> np.ndarray:
    return scene[PIECE_Y : PIECE_Y + size, PIECE_X : PIECE_X + size].copy()


def bordered_piece(patch: np.ndarray, border: int = 2) -> np.ndarray:
    """RGBA piece with a fully transparent border around an opaque patch."""
    h, w = patch.shape[:2]
    out = np.zeros((h + 2 * border, w + 2 * border, 4), dtype=np.uint8)
    out[border : border + h, border : border + w, :3] = patch
    out[border : border + h, border : border + w, 3] = 255
    return out


@pytest.fixture
def scene() -> np.ndarray:
    return make_scene()


@pytest.fixture
def background_bytes(scene) -> bytes:
    return encode_png(scene)


@pytest.fixture
def piece_bytes(scene) -> bytes:
    """Opaque RGB cut-out of the motif, no transparency."""
    return encode_png(piece_patch(scene))


@pytest.fixture
def bordered_piece_bytes(scene) -> bytes:
    """Cut-out of the motif with a 2px transparent border."""
    return encode_png(bordered_piece(piece_patch(scene)))


@pytest.fixture
def uniform_piece_bytes() -> bytes:
    return encode_png(np.full((20, 20, 3), 128, dtype=np.uint8))


@pytest.fixture
def image_files(tmp_path, piece_bytes, background_bytes):
    target = tmp_path / "cut1.png"
    background = tmp_path / "bg1.png"
    target.write_bytes(piece_bytes)
    background.write_bytes(background_bytes)
    return target, background
