"""
Slide puzzle matcher: finds where a puzzle piece sits inside its background.

Both images are reduced to Canny edge maps and compared with zero-mean
normalized cross-correlation. Four entry points cover the combinations of
alpha cropping and adaptive thresholds; all of them run through
locate_piece(), which also returns the intermediate data for debugging.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .edges import canny, detect_edges
from .errors import DimensionError, ValidationError
from .imaging import (
    PathLike,
    Rect,
    crop_to_alpha,
    decode_image,
    image_size,
    read_image_bytes,
    to_grayscale,
)

logger = logging.getLogger(__name__)

# ---------- configuration ----------
BASELINE_LOW_THRESHOLD = 100.0
BASELINE_HIGH_THRESHOLD = 200.0
BASELINE_THRESHOLDS = (BASELINE_LOW_THRESHOLD, BASELINE_HIGH_THRESHOLD)
DEFAULT_CONFIDENCE_THRESHOLD = 0.3
PROFILE_ENV = "SLIDEMATCH_PROFILE"
# Scores within this distance of the maximum count as tied, so windows with
# identical content tie regardless of FFT round-off. Not applied to "direct".
SCORE_TIE_TOLERANCE = 1e-5
CORRELATION_METHODS = ("fft", "direct")


# ---------- helper dataclasses ----------
@dataclass(frozen=True)
class MatchPoint:
    x: int
    y: int
    score: float


@dataclass(frozen=True)
class BoundingBox:
    target_x: int
    target_y: int
    x1: int
    y1: int
    x2: int
    y2: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class MatchPayload:
    bbox: BoundingBox
    crop: Rect
    point: MatchPoint
    target_thresholds: Tuple[float, float]
    background_thresholds: Tuple[float, float]
    target_edges: np.ndarray
    background_edges: np.ndarray
    adaptive: bool = False
    used_fallback: bool = False
    adaptive_score: Optional[float] = None


# ---------- correlation ----------
def _window_sums(img: np.ndarray, th: int, tw: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-window sum and sum of squares for every (th, tw) window of img.

    Uses exact int64 summed-area tables; the result shape matches the
    correlation surface.
    """
    h, w = img.shape
    a = img.astype(np.int64)
    sat = np.zeros((h + 1, w + 1), dtype=np.int64)
    sat2 = np.zeros((h + 1, w + 1), dtype=np.int64)
    sat[1:, 1:] = a.cumsum(axis=0).cumsum(axis=1)
    sat2[1:, 1:] = (a * a).cumsum(axis=0).cumsum(axis=1)

    def box(t: np.ndarray) -> np.ndarray:
        return t[th:, tw:] - t[:-th, tw:] - t[th:, :-tw] + t[:-th, :-tw]

    return box(sat), box(sat2)


def _flat_windows(background: np.ndarray, th: int, tw: int) -> np.ndarray:
    sums, sq_sums = _window_sums(background, th, tw)
    n = th * tw
    return sq_sums * n - sums * sums == 0


def _correlation_direct(background: np.ndarray, template: np.ndarray) -> np.ndarray:
    th, tw = template.shape
    t = template.astype(np.float64)
    t0 = t - t.mean()
    t_ss = float((t0 * t0).sum())
    rows = background.shape[0] - th + 1
    cols = background.shape[1] - tw + 1
    out = np.zeros((rows, cols), dtype=np.float64)
    bg = background.astype(np.float64)
    for y in range(rows):
        strip = sliding_window_view(bg[y : y + th], (th, tw))[0]
        w0 = strip - strip.mean(axis=(1, 2), keepdims=True)
        num = np.einsum("kij,ij->k", w0, t0)
        denom = np.sqrt((w0 * w0).sum(axis=(1, 2)) * t_ss)
        nz = denom > 0
        out[y, nz] = num[nz] / denom[nz]
    return out.astype(np.float32)


def correlation_surface(
    background: np.ndarray, template: np.ndarray, method: str = "fft"
) -> np.ndarray:
    """
    Zero-mean normalized cross-correlation of template against background.

    score(x, y) = sum((B - mean_B) * (T - mean_T))
                  / sqrt(sum((B - mean_B)^2) * sum((T - mean_T)^2))

    where B is the background window at offset (x, y), with mean_B taken
    per window. A window or template with zero variance scores 0.

    Args:
        background: 2-D search image.
        template: 2-D template, no larger than background on either axis.
        method: "fft" uses cv2.matchTemplate (TM_CCOEFF_NORMED); "direct"
            evaluates the formula window by window. Both agree to ~1e-5.

    Returns:
        float32 array of shape (bg_h - th + 1, bg_w - tw + 1).

    Raises:
        ValueError: On an unknown method or a template larger than the
            background.
    """
    if method not in CORRELATION_METHODS:
        raise ValueError(
            f"Unknown correlation method '{method}'. "
            f"Available: {', '.join(CORRELATION_METHODS)}"
        )
    bh, bw = background.shape[:2]
    th, tw = template.shape[:2]
    if th > bh or tw > bw:
        raise ValueError(
            f"Template {tw}x{th} does not fit in background {bw}x{bh}"
        )

    rows = bh - th + 1
    cols = bw - tw + 1
    tpl = template.astype(np.int64)
    if int((tpl * tpl).sum()) * th * tw - int(tpl.sum()) ** 2 == 0:
        return np.zeros((rows, cols), dtype=np.float32)

    if method == "direct":
        surface = _correlation_direct(background, template)
    else:
        surface = cv2.matchTemplate(
            background.astype(np.float32),
            template.astype(np.float32),
            cv2.TM_CCOEFF_NORMED,
        )
    surface[_flat_windows(background, th, tw)] = 0.0
    return surface


def best_match(surface: np.ndarray, tolerance: float = 0.0) -> MatchPoint:
    """
    Global maximum of a correlation surface.

    Scores within `tolerance` of the peak count as tied, and ties go to the
    first offset in row-major order: smallest y, then smallest x. The
    returned score is the value at that offset, so with a non-zero
    tolerance it may sit up to `tolerance` below the peak.
    """
    peak = float(surface.max())
    idx = int(np.flatnonzero(surface.ravel() >= peak - tolerance)[0])
    y, x = divmod(idx, surface.shape[1])
    return MatchPoint(x=int(x), y=int(y), score=float(surface[y, x]))


def match_template(
    background_edges: np.ndarray, target_edges: np.ndarray, method: str = "fft"
) -> Tuple[np.ndarray, MatchPoint]:
    surface = correlation_surface(background_edges, target_edges, method=method)
    tolerance = SCORE_TIE_TOLERANCE if method == "fft" else 0.0
    return surface, best_match(surface, tolerance)


# ---------- pipeline ----------
def _validate_confidence(confidence_threshold: Optional[float]) -> float:
    if confidence_threshold is None:
        return DEFAULT_CONFIDENCE_THRESHOLD
    try:
        value = float(confidence_threshold)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Confidence threshold must be a number, got {confidence_threshold!r}"
        ) from exc
    if not (0.0 <= value <= 1.0):
        raise ValidationError(
            f"Confidence threshold must be within [0.0, 1.0], got {value}"
        )
    return value


def _check_dimensions(target: np.ndarray, background: np.ndarray) -> None:
    tw, th = image_size(target)
    bw, bh = image_size(background)
    if bw < tw or bh < th:
        raise DimensionError(
            f"Background {bw}x{bh} must be at least as large as target {tw}x{th}"
        )


def _profile_enabled() -> bool:
    profile_value = os.getenv(PROFILE_ENV, "").strip().lower()
    return profile_value not in ("", "0", "false", "no")


def locate_piece(
    target_bytes: bytes,
    background_bytes: bytes,
    crop: bool = True,
    adaptive: bool = False,
    confidence_threshold: Optional[float] = DEFAULT_CONFIDENCE_THRESHOLD,
    method: str = "fft",
) -> MatchPayload:
    """
    Locate the target piece inside the background.

    Args:
        target_bytes: Encoded piece image. Transparent borders are cropped
            away first when ``crop`` is set.
        background_bytes: Encoded background image.
        crop: Trim the target to its non-transparent bounding box.
        adaptive: Derive Canny thresholds from each image's statistics. When
            the best score is not above ``confidence_threshold`` the whole
            edge/match step is redone with the fixed baseline thresholds.
        confidence_threshold: Only used when ``adaptive`` is set; in [0, 1].
        method: Correlation backend, see correlation_surface().

    Returns:
        MatchPayload with the bounding box and intermediate data.

    Raises:
        ValidationError: confidence_threshold outside [0, 1].
        DecodeError: either image cannot be decoded.
        DimensionError: background smaller than target.
    """
    if adaptive:
        confidence_threshold = _validate_confidence(confidence_threshold)

    profile = _profile_enabled()
    if profile:
        t0 = time.perf_counter()
        marks: List[Tuple[str, float]] = []

    target = decode_image(target_bytes, "target")
    background = decode_image(background_bytes, "background")
    _check_dimensions(target, background)
    if profile:
        marks.append(("decode", time.perf_counter()))

    if crop:
        rect, target = crop_to_alpha(target)
    else:
        tw, th = image_size(target)
        rect = Rect(0, 0, tw, th)
    if profile:
        marks.append(("crop", time.perf_counter()))

    target_gray = to_grayscale(target)
    background_gray = to_grayscale(background)
    if profile:
        marks.append(("grayscale", time.perf_counter()))

    target_edges, target_thr = detect_edges(target_gray, adaptive, BASELINE_THRESHOLDS)
    background_edges, background_thr = detect_edges(
        background_gray, adaptive, BASELINE_THRESHOLDS
    )
    if profile:
        marks.append(("canny", time.perf_counter()))

    _, point = match_template(background_edges, target_edges, method=method)
    if profile:
        marks.append(("match", time.perf_counter()))

    used_fallback = False
    adaptive_score = None
    if adaptive:
        adaptive_score = point.score
        if point.score <= confidence_threshold:
            logger.debug(
                "adaptive score %.4f <= %.4f, retrying with baseline thresholds",
                point.score,
                confidence_threshold,
            )
            used_fallback = True
            target_thr = background_thr = BASELINE_THRESHOLDS
            target_edges = canny(target_gray, *BASELINE_THRESHOLDS)
            background_edges = canny(background_gray, *BASELINE_THRESHOLDS)
            _, point = match_template(background_edges, target_edges, method=method)
            if profile:
                marks.append(("fallback", time.perf_counter()))

    eh, ew = target_edges.shape
    bbox = BoundingBox(
        target_x=rect.start_x,
        target_y=rect.start_y,
        x1=point.x,
        y1=point.y,
        x2=point.x + ew,
        y2=point.y + eh,
    )

    if profile:
        t_end = time.perf_counter()
        prev = t0
        parts = []
        for label, ts in marks:
            parts.append(f"{label}={((ts - prev) * 1000.0):.2f}ms")
            prev = ts
        parts.append(f"total={((t_end - t0) * 1000.0):.2f}ms")
        print("matcher profile:", " ".join(parts))

    return MatchPayload(
        bbox=bbox,
        crop=rect,
        point=point,
        target_thresholds=(float(target_thr[0]), float(target_thr[1])),
        background_thresholds=(float(background_thr[0]), float(background_thr[1])),
        target_edges=target_edges,
        background_edges=background_edges,
        adaptive=adaptive,
        used_fallback=used_fallback,
        adaptive_score=adaptive_score,
    )


# ---------- public API ----------
def match(target_bytes: bytes, background_bytes: bytes) -> BoundingBox:
    """Cropped target, fixed 100/200 thresholds."""
    return locate_piece(target_bytes, background_bytes, crop=True, adaptive=False).bbox


def match_simple(target_bytes: bytes, background_bytes: bytes) -> BoundingBox:
    """Uncropped target, fixed 100/200 thresholds."""
    return locate_piece(target_bytes, background_bytes, crop=False, adaptive=False).bbox


def match_adaptive(
    target_bytes: bytes,
    background_bytes: bytes,
    confidence_threshold: Optional[float] = DEFAULT_CONFIDENCE_THRESHOLD,
) -> BoundingBox:
    """Cropped target, adaptive thresholds with baseline fallback."""
    return locate_piece(
        target_bytes,
        background_bytes,
        crop=True,
        adaptive=True,
        confidence_threshold=confidence_threshold,
    ).bbox


def match_simple_adaptive(
    target_bytes: bytes,
    background_bytes: bytes,
    confidence_threshold: Optional[float] = DEFAULT_CONFIDENCE_THRESHOLD,
) -> BoundingBox:
    """Uncropped target, adaptive thresholds with baseline fallback."""
    return locate_piece(
        target_bytes,
        background_bytes,
        crop=False,
        adaptive=True,
        confidence_threshold=confidence_threshold,
    ).bbox


def _read_pair(target_path: PathLike, background_path: PathLike) -> Tuple[bytes, bytes]:
    return (
        read_image_bytes(target_path, "target"),
        read_image_bytes(background_path, "background"),
    )


def match_path(target_path: PathLike, background_path: PathLike) -> BoundingBox:
    return match(*_read_pair(target_path, background_path))


def match_simple_path(target_path: PathLike, background_path: PathLike) -> BoundingBox:
    return match_simple(*_read_pair(target_path, background_path))


def match_adaptive_path(
    target_path: PathLike,
    background_path: PathLike,
    confidence_threshold: Optional[float] = DEFAULT_CONFIDENCE_THRESHOLD,
) -> BoundingBox:
    # Validate before touching the filesystem, like the bytes form does
    # before decoding.
    threshold = _validate_confidence(confidence_threshold)
    return match_adaptive(*_read_pair(target_path, background_path), threshold)


def match_simple_adaptive_path(
    target_path: PathLike,
    background_path: PathLike,
    confidence_threshold: Optional[float] = DEFAULT_CONFIDENCE_THRESHOLD,
) -> BoundingBox:
    threshold = _validate_confidence(confidence_threshold)
    return match_simple_adaptive(*_read_pair(target_path, background_path), threshold)


# ---------- rendering ----------
def render_match(
    background_bytes: bytes,
    bbox: BoundingBox,
    color: Tuple[int, int, int] = (0, 255, 0),
    thickness: int = 2,
) -> np.ndarray:
    """Background as an RGB array with the matched rectangle drawn on it."""
    background = decode_image(background_bytes, "background")
    canvas = np.ascontiguousarray(background[:, :, :3])
    cv2.rectangle(
        canvas,
        (bbox.x1, bbox.y1),
        (max(bbox.x1, bbox.x2 - 1), max(bbox.y1, bbox.y2 - 1)),
        color,
        thickness,
    )
    return canvas


def format_match_summary(payload: MatchPayload) -> str:
    bbox = payload.bbox
    lines = [
        f"Match at ({bbox.x1}, {bbox.y1})-({bbox.x2}, {bbox.y2}) | "
        f"Score: {payload.point.score:.3f}",
        f"Target crop offset: ({bbox.target_x}, {bbox.target_y}) | "
        f"size {payload.crop.width}x{payload.crop.height}",
        "Canny thresholds: target {:.1f}/{:.1f}, background {:.1f}/{:.1f}".format(
            *payload.target_thresholds, *payload.background_thresholds
        ),
    ]
    if payload.used_fallback and payload.adaptive_score is not None:
        lines.append(
            f"Adaptive score {payload.adaptive_score:.3f} too low; used baseline thresholds"
        )
    return "\n".join(lines)
