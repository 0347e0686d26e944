"""
Image loading and the two cheap preprocessing stages of the slide matcher:
cropping the target to its opaque region and reducing colour to luma.
"""

from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, ImageReadError

PathLike = Union[str, "os.PathLike[str]"]

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)
# Pillow modes holding more than 8 bits per sample; convert("RGBA") clips them.
WIDE_GRAY_MODES = ("I", "I;16", "I;16B", "I;16L", "I;16N")


@dataclass(frozen=True)
class Rect:
    start_x: int
    start_y: int
    width: int
    height: int


# ---------- loading ----------
def read_image_bytes(path: PathLike, label: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError as exc:
        raise ImageReadError(
            f"Failed to read {label} image: {os.fspath(path)} ({exc})"
        ) from exc


def _wide_gray_to_rgba(samples: np.ndarray) -> np.ndarray:
    gray = np.clip(samples.astype(np.int64) >> 8, 0, 255).astype(np.uint8)
    alpha = np.full_like(gray, 255)
    return np.dstack([gray, gray, gray, alpha])


def decode_image(data: bytes, label: str) -> np.ndarray:
    """
    Decode encoded image bytes into an RGBA uint8 array.

    Any format Pillow understands is accepted. Images without transparency
    come back with alpha 255 everywhere.

    Args:
        data: Encoded image (PNG, JPEG, WebP, ...).
        label: "target" or "background"; used in the error message.

    Returns:
        Array of shape (height, width, 4). 16-bit grayscale samples are
        scaled down to 8 bits.

    Raises:
        DecodeError: If the bytes are empty or not a readable image.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(
            f"Failed to decode {label} image: expected bytes, got {type(data).__name__}"
        )
    if len(data) == 0:
        raise DecodeError(f"Failed to decode {label} image: empty buffer")
    try:
        with Image.open(io.BytesIO(bytes(data))) as img:
            img.load()
            if img.mode in WIDE_GRAY_MODES:
                rgba = _wide_gray_to_rgba(np.asarray(img))
            else:
                rgba = np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Failed to decode {label} image: {exc}") from exc
    if rgba.ndim != 3 or rgba.shape[0] == 0 or rgba.shape[1] == 0:
        raise DecodeError(f"Failed to decode {label} image: empty image")
    return rgba.copy()


def image_size(img: np.ndarray) -> Tuple[int, int]:
    h, w = img.shape[:2]
    return int(w), int(h)


# ---------- alpha crop ----------
def alpha_bounding_box(rgba: np.ndarray) -> Rect:
    """
    Smallest rectangle enclosing every pixel whose alpha is non-zero.

    A fully transparent image yields the full-image rectangle, so callers
    never crop it away to nothing.
    """
    h, w = rgba.shape[:2]
    ys, xs = np.nonzero(rgba[:, :, 3])
    if len(xs) == 0:
        return Rect(0, 0, int(w), int(h))
    x0, x1 = int(xs.min()), int(xs.max())
    y0, y1 = int(ys.min()), int(ys.max())
    return Rect(x0, y0, x1 - x0 + 1, y1 - y0 + 1)


def crop_to_alpha(rgba: np.ndarray) -> Tuple[Rect, np.ndarray]:
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"Expected an RGBA image, got shape {rgba.shape}")
    rect = alpha_bounding_box(rgba)
    cropped = rgba[
        rect.start_y : rect.start_y + rect.height,
        rect.start_x : rect.start_x + rect.width,
    ].copy()
    return rect, cropped


# ---------- grayscale ----------
def to_grayscale(img: np.ndarray) -> np.ndarray:
    """Luma with 0.299/0.587/0.114 weights rounded to nearest; alpha is ignored."""
    if img.ndim == 2:
        return img.astype(np.uint8, copy=True)
    channels = img.shape[2]
    if channels in (3, 4):
        luma = img[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS
        return np.floor(luma + 0.5).astype(np.uint8)
    if channels == 1:
        return img[:, :, 0].astype(np.uint8, copy=True)
    raise ValueError(f"Unsupported channel count: {channels}")
