"""
Canny edge detection with per-image adaptive thresholds.

The detector is written out stage by stage (blur, gradient, non-maximum
suppression, hysteresis) so that float thresholds are honoured exactly and
the behaviour is the same on every OpenCV build.
"""

from __future__ import annotations

from typing import List, Tuple

import cv2
import numpy as np

# ---------- configuration ----------
CANNY_SIGMA = 1.4
ADAPTIVE_LOW_FLOOR = 50.0
ADAPTIVE_HIGH_CEILING = 250.0
EDGE_VALUE = 255

NEIGHBOURS_8 = [
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, -1),
    (0, 1),
    (1, -1),
    (1, 0),
    (1, 1),
]


def adaptive_thresholds(gray: np.ndarray) -> Tuple[float, float]:
    """
    Derive Canny thresholds from the pixel statistics of a grayscale image.

    low  = max(mean - std, 0), then raised to at least ADAPTIVE_LOW_FLOOR
    high = min(mean + 2 * std, 255), then capped at ADAPTIVE_HIGH_CEILING

    Both statistics are population values. Nothing forces low <= high: a
    near-uniform dark image gives low = 50 with a smaller high. canny()
    handles that case.

    Raises:
        ValueError: If the image has no pixels.
    """
    if gray.size == 0:
        raise ValueError("Cannot estimate thresholds for an empty image")
    values = gray.astype(np.float64)
    mean = float(values.mean())
    std = float(values.std())
    low = max(mean - std, 0.0)
    high = min(mean + 2.0 * std, 255.0)
    return max(low, ADAPTIVE_LOW_FLOOR), min(high, ADAPTIVE_HIGH_CEILING)


def _gradients(gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    blurred = cv2.GaussianBlur(
        gray.astype(np.float32),
        (0, 0),
        CANNY_SIGMA,
        borderType=cv2.BORDER_REPLICATE,
    )
    border = cv2.BORDER_REPLICATE
    gx = cv2.Sobel(blurred, cv2.CV_32F, 1, 0, ksize=3, borderType=border)
    gy = cv2.Sobel(blurred, cv2.CV_32F, 0, 1, ksize=3, borderType=border)
    return gx, gy


def _non_max_suppression(
    magnitude: np.ndarray, gx: np.ndarray, gy: np.ndarray
) -> np.ndarray:
    """
    Keep only pixels that are local maxima along their gradient direction.

    Directions are quantised to 0, 45, 90 and 135 degrees (y grows
    downwards). The outermost ring of pixels is always suppressed.
    """
    h, w = magnitude.shape
    if h < 3 or w < 3:
        return np.zeros_like(magnitude)

    padded = np.pad(magnitude, 1, mode="constant")

    def shifted(dy: int, dx: int) -> np.ndarray:
        return padded[1 + dy : 1 + dy + h, 1 + dx : 1 + dx + w]

    angle = np.degrees(np.arctan2(gy, gx)) % 180.0
    horizontal = (angle < 22.5) | (angle >= 157.5)
    diagonal = (angle >= 22.5) & (angle < 67.5)
    vertical = (angle >= 67.5) & (angle < 112.5)
    anti_diagonal = (angle >= 112.5) & (angle < 157.5)

    n1 = np.zeros_like(magnitude)
    n2 = np.zeros_like(magnitude)
    for mask, (a, b) in (
        (horizontal, ((0, -1), (0, 1))),
        (diagonal, ((-1, -1), (1, 1))),
        (vertical, ((-1, 0), (1, 0))),
        (anti_diagonal, ((-1, 1), (1, -1))),
    ):
        n1[mask] = shifted(*a)[mask]
        n2[mask] = shifted(*b)[mask]

    keep = (magnitude >= n1) & (magnitude >= n2)
    thin = np.where(keep, magnitude, 0.0).astype(np.float32)
    thin[0, :] = 0
    thin[-1, :] = 0
    thin[:, 0] = 0
    thin[:, -1] = 0
    return thin


def _hysteresis(thin: np.ndarray, low: float, high: float) -> np.ndarray:
    """
    Double threshold plus 8-connected edge tracking.

    Strong pixels seed a worklist; any weak pixel reachable from a seed
    through other weak pixels is promoted. Iterative, so long contours do
    not hit the recursion limit.
    """
    h, w = thin.shape
    nonzero = thin > 0
    strong = nonzero & (thin >= high)
    weak = nonzero & (thin >= low)

    edges = np.zeros((h, w), dtype=np.uint8)
    edges[strong] = EDGE_VALUE
    stack: List[Tuple[int, int]] = [
        (int(y), int(x)) for y, x in zip(*np.nonzero(strong))
    ]
    while stack:
        y, x = stack.pop()
        for dy, dx in NEIGHBOURS_8:
            ny = y + dy
            nx = x + dx
            if ny < 0 or nx < 0 or ny >= h or nx >= w:
                continue
            if weak[ny, nx] and edges[ny, nx] == 0:
                edges[ny, nx] = EDGE_VALUE
                stack.append((ny, nx))
    return edges


def canny(gray: np.ndarray, low: float, high: float) -> np.ndarray:
    """
    Binary edge map of a grayscale image.

    Args:
        gray: 2-D uint8 image.
        low: Weak-edge gradient threshold.
        high: Strong-edge gradient threshold. If it is below ``low`` the two
            are swapped.

    Returns:
        uint8 array of the same shape holding 0 or 255.
    """
    if gray.ndim != 2:
        raise ValueError(
            f"canny expects a single-channel image, got shape {gray.shape}"
        )
    if low > high:
        low, high = high, low
    gx, gy = _gradients(gray)
    magnitude = np.hypot(gx, gy)
    thin = _non_max_suppression(magnitude, gx, gy)
    return _hysteresis(thin, float(low), float(high))


def detect_edges(
    gray: np.ndarray, adaptive: bool, baseline: Tuple[float, float]
) -> Tuple[np.ndarray, Tuple[float, float]]:
    """Run canny() with either adaptive or the given fixed thresholds."""
    thresholds = adaptive_thresholds(gray) if adaptive else baseline
    return canny(gray, *thresholds), thresholds
