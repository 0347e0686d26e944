"""Create sample slide puzzle cases (cutN.png, bgN.png, pos.txt) for testing"""
import argparse
import os
from typing import List, Tuple

import cv2
import numpy as np
from PIL import Image

BACKGROUND_SIZE = (320, 160)
PIECE_SIZE = 44
KNOB_RADIUS = 7


def create_background(rng: np.random.Generator, width: int, height: int) -> np.ndarray:
    """Random blocks and discs over a soft gradient"""
    xs = np.linspace(60, 160, width, dtype=np.float32)
    img = np.repeat(np.tile(xs, (height, 1))[:, :, None], 3, axis=2).astype(np.uint8)
    for _ in range(30):
        color = [int(c) for c in rng.integers(0, 256, size=3)]
        x0 = int(rng.integers(0, width))
        y0 = int(rng.integers(0, height))
        if rng.random() < 0.5:
            x1 = x0 + int(rng.integers(10, 60))
            y1 = y0 + int(rng.integers(10, 60))
            cv2.rectangle(img, (x0, y0), (x1, y1), color, -1)
        else:
            cv2.circle(img, (x0, y0), int(rng.integers(5, 25)), color, -1)
    return img


def create_piece_mask(size: int) -> np.ndarray:
    """Square piece with a knob on the right and top edges"""
    full = size + 2 * KNOB_RADIUS
    mask = np.zeros((full, full), dtype=np.uint8)
    o = KNOB_RADIUS
    cv2.rectangle(mask, (o, o), (o + size - 1, o + size - 1), 255, -1)
    cv2.circle(mask, (o + size, o + size // 2), KNOB_RADIUS, 255, -1)
    cv2.circle(mask, (o + size // 2, o), KNOB_RADIUS, 255, -1)
    return mask


def create_case(
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray, Tuple[int, int, int, int, int, int]]:
    """
    Build one background/piece pair.

    The piece image is as tall as the background and transparent outside
    the piece, so cropping recovers the vertical offset.
    """
    width, height = BACKGROUND_SIZE
    scene = create_background(rng, width, height)
    mask = create_piece_mask(PIECE_SIZE)
    mh, mw = mask.shape
    px = int(rng.integers(width // 3, width - mw))
    py = int(rng.integers(0, height - mh))

    piece = np.zeros((height, mw, 4), dtype=np.uint8)
    region = scene[py : py + mh, px : px + mw]
    piece[py : py + mh, :, :3] = np.where(mask[:, :, None] > 0, region, 0)
    piece[py : py + mh, :, 3] = mask

    # Lighten the hole the piece was cut from, as slide captchas do.
    background = scene.copy()
    hole = mask > 0
    lightened = (region.astype(np.float32) * 0.5 + 127).astype(np.uint8)
    background[py : py + mh, px : px + mw][hole] = lightened[hole]

    ys, xs = np.nonzero(mask)
    x0, y0 = int(xs.min()), int(ys.min())
    bw = int(xs.max()) - x0 + 1
    bh = int(ys.max()) - y0 + 1
    label = (px + x0, py + y0, px + x0 + bw, py + y0 + bh, x0, py + y0)
    return background, piece, label


def format_position(index: int, label: Tuple[int, int, int, int, int, int]) -> str:
    x1, y1, x2, y2, tx, ty = label
    return f"{index}{{ target: [ {x1}, {y1}, {x2}, {y2} ], target_x: {tx}, target_y: {ty} }}"


def create_cases(out_dir: str, count: int, seed: int = 0) -> List[str]:
    os.makedirs(out_dir, exist_ok=True)
    rng = np.random.default_rng(seed)
    lines = []
    for index in range(1, count + 1):
        background, piece, label = create_case(rng)
        Image.fromarray(background).save(os.path.join(out_dir, f"bg{index}.png"))
        Image.fromarray(piece).save(os.path.join(out_dir, f"cut{index}.png"))
        lines.append(format_position(index, label))
    with open(os.path.join(out_dir, "pos.txt"), "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")
    return lines


def main():
    parser = argparse.ArgumentParser(description="Create sample slide puzzle cases.")
    parser.add_argument("out_dir", help="Directory to write the cases to.")
    parser.add_argument("--count", type=int, default=10, help="Number of cases.")
    parser.add_argument("--seed", type=int, default=0, help="Random seed.")
    args = parser.parse_args()

    print(f"Creating {args.count} sample cases in {args.out_dir}...")
    for line in create_cases(args.out_dir, args.count, args.seed):
        print(line)
    print("\nDone!")


if __name__ == "__main__":
    main()
