"""Command line entry point: print the bounding box of a piece as JSON."""

import argparse
import json
import sys
from typing import List, Optional

from PIL import Image

from . import matcher
from .errors import SlideMatchError
from .imaging import read_image_bytes

MODES = {
    "match": (True, False),
    "simple": (False, False),
    "adaptive": (True, True),
    "simple-adaptive": (False, True),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slidematch",
        description="Locate a slider puzzle piece inside its background image.",
    )
    parser.add_argument("target", help="Path to the puzzle piece image.")
    parser.add_argument("background", help="Path to the background image.")
    parser.add_argument(
        "--mode",
        choices=sorted(MODES),
        default="match",
        help="Algorithm variant (default: match).",
    )
    parser.add_argument(
        "--confidence-threshold",
        type=float,
        default=matcher.DEFAULT_CONFIDENCE_THRESHOLD,
        help="Fallback threshold for the adaptive modes, in [0, 1].",
    )
    parser.add_argument(
        "--annotate",
        default=None,
        help="Write the background with the match drawn on it to this path.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print a match summary to stderr.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    crop, adaptive = MODES[args.mode]
    try:
        target_bytes = read_image_bytes(args.target, "target")
        background_bytes = read_image_bytes(args.background, "background")
        payload = matcher.locate_piece(
            target_bytes,
            background_bytes,
            crop=crop,
            adaptive=adaptive,
            confidence_threshold=args.confidence_threshold,
        )
        if args.annotate:
            canvas = matcher.render_match(background_bytes, payload.bbox)
            Image.fromarray(canvas).save(args.annotate)
    except (SlideMatchError, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.verbose:
        print(matcher.format_match_summary(payload), file=sys.stderr)
    print(json.dumps(payload.bbox.to_dict()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
