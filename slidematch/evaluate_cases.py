#!/usr/bin/env python3
"""
Accuracy report for the slide matcher over a directory of labelled cases.

The directory holds ``cutN.png`` (piece) / ``bgN.png`` (background) pairs
and a ``pos.txt`` with one line per case:

    N{ target: [ x1, y1, x2, y2 ], target_x: tx, target_y: ty }

Usage:
    python -m slidematch.evaluate_cases path/to/images
    python -m slidematch.evaluate_cases path/to/images --algorithm adaptive
"""

import argparse
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from . import matcher
from .errors import SlideMatchError

POS_LINE = re.compile(
    r"(\d+)\{ target: \[ (\d+), (\d+), (\d+), (\d+) \], "
    r"target_x: (\d+), target_y: (\d+) \}"
)
DEFAULT_TOLERANCE = 5

ALGORITHMS: Dict[str, Callable[[bytes, bytes], matcher.BoundingBox]] = {
    "match": matcher.match,
    "simple": matcher.match_simple,
    "adaptive": matcher.match_adaptive,
    "simple-adaptive": matcher.match_simple_adaptive,
}


@dataclass
class Case:
    index: int
    target_path: str
    background_path: str
    expected: matcher.BoundingBox


@dataclass
class CaseResult:
    case: Case
    bbox: Optional[matcher.BoundingBox]
    error: Optional[str] = None

    @property
    def offsets(self) -> List[int]:
        if self.bbox is None:
            return []
        exp = self.case.expected
        return [
            abs(self.bbox.x1 - exp.x1),
            abs(self.bbox.y1 - exp.y1),
            abs(self.bbox.x2 - exp.x2),
            abs(self.bbox.y2 - exp.y2),
        ]

    def accurate(self, tolerance: int = DEFAULT_TOLERANCE) -> bool:
        return self.bbox is not None and all(d <= tolerance for d in self.offsets)


def parse_positions(text: str) -> Dict[int, matcher.BoundingBox]:
    positions: Dict[int, matcher.BoundingBox] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        m = POS_LINE.match(line)
        if not m:
            continue
        index, x1, y1, x2, y2, tx, ty = (int(v) for v in m.groups())
        positions[index] = matcher.BoundingBox(
            target_x=tx, target_y=ty, x1=x1, y1=y1, x2=x2, y2=y2
        )
    return positions


def _file_index(name: str) -> Optional[int]:
    m = re.search(r"\d+", name)
    return int(m.group(0)) if m else None


def discover_cases(images_dir: str) -> List[Case]:
    pos_path = os.path.join(images_dir, "pos.txt")
    with open(pos_path, "r", encoding="utf-8") as fh:
        expected = parse_positions(fh.read())

    names = sorted(f for f in os.listdir(images_dir) if f.endswith(".png"))
    backgrounds = {}
    for name in names:
        index = _file_index(name)
        if name.startswith("bg") and index is not None:
            backgrounds[index] = name
    cases = []
    for name in names:
        if not name.startswith("cut"):
            continue
        index = _file_index(name)
        if index is None or index not in backgrounds or index not in expected:
            continue
        cases.append(
            Case(
                index=index,
                target_path=os.path.join(images_dir, name),
                background_path=os.path.join(images_dir, backgrounds[index]),
                expected=expected[index],
            )
        )
    cases.sort(key=lambda c: c.index)
    return cases


def evaluate(cases: Sequence[Case], algorithm: str) -> List[CaseResult]:
    fn = ALGORITHMS[algorithm]
    results = []
    for case in cases:
        with open(case.target_path, "rb") as fh:
            target_bytes = fh.read()
        with open(case.background_path, "rb") as fh:
            background_bytes = fh.read()
        try:
            bbox = fn(target_bytes, background_bytes)
        except SlideMatchError as exc:
            results.append(CaseResult(case=case, bbox=None, error=str(exc)))
            continue
        results.append(CaseResult(case=case, bbox=bbox))
    return results


def summarize(
    results: Sequence[CaseResult], tolerance: int = DEFAULT_TOLERANCE
) -> Dict[str, float]:
    """Accurate count and mean |dx1| + |dy1| over the cases that ran."""
    total = len(results)
    accurate = sum(1 for r in results if r.accurate(tolerance))
    ran = [r for r in results if r.bbox is not None]
    total_error = sum(r.offsets[0] + r.offsets[1] for r in ran)
    return {
        "total": total,
        "accurate": accurate,
        "failed": total - len(ran),
        "accuracy": (accurate / total) if total else 0.0,
        "mean_error": (total_error / total) if total else 0.0,
    }


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Evaluate matcher accuracy.")
    parser.add_argument("images_dir", help="Directory with cut/bg pairs and pos.txt.")
    parser.add_argument(
        "--algorithm",
        action="append",
        choices=sorted(ALGORITHMS),
        default=[],
        help="Algorithm to evaluate (repeatable, default: match and adaptive).",
    )
    parser.add_argument(
        "--tolerance",
        type=int,
        default=DEFAULT_TOLERANCE,
        help="Max per-coordinate error in pixels for a case to count as accurate.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print every case, not just the summary.",
    )
    args = parser.parse_args(argv)

    algorithms = args.algorithm or ["match", "adaptive"]
    cases = discover_cases(args.images_dir)
    print(f"Cases: {len(cases)}")
    for name in algorithms:
        results = evaluate(cases, name)
        if args.verbose:
            for r in results:
                exp = r.case.expected
                if r.bbox is None:
                    print(f"  [{name}] case {r.case.index}: error {r.error}")
                    continue
                print(
                    f"  [{name}] case {r.case.index}: "
                    f"expected [{exp.x1}, {exp.y1}, {exp.x2}, {exp.y2}] "
                    f"got [{r.bbox.x1}, {r.bbox.y1}, {r.bbox.x2}, {r.bbox.y2}] "
                    f"offsets {r.offsets}"
                )
        stats = summarize(results, args.tolerance)
        print(
            f"{name}: accurate {stats['accurate']}/{stats['total']} "
            f"({stats['accuracy'] * 100:.1f}%), failed {stats['failed']}, "
            f"mean error {stats['mean_error']:.2f}"
        )


if __name__ == "__main__":
    main()
