#!/usr/bin/env python3

import argparse
import math
import statistics
import time
from typing import Dict, List, Tuple

from . import matcher
from .evaluate_cases import ALGORITHMS, Case, discover_cases

CaseBytes = Tuple[int, bytes, bytes]


def _percentile(sorted_vals: List[float], p: float) -> float:
    if not sorted_vals:
        return 0.0
    k = (len(sorted_vals) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[f] * (c - k) + sorted_vals[c] * (k - f)


def _format_ms(value_s: float) -> str:
    return f"{value_s * 1000.0:.2f} ms"


def _load_cases(cases: List[Case], selected: List[int]) -> List[CaseBytes]:
    by_index = {c.index: c for c in cases}
    chosen = cases
    if selected:
        chosen = []
        for index in selected:
            case = by_index.get(index)
            if case is None:
                raise ValueError(
                    f"Unknown case {index}. Available: {', '.join(str(i) for i in by_index)}"
                )
            chosen.append(case)
    loaded = []
    for case in chosen:
        with open(case.target_path, "rb") as fh:
            target_bytes = fh.read()
        with open(case.background_path, "rb") as fh:
            background_bytes = fh.read()
        loaded.append((case.index, target_bytes, background_bytes))
    return loaded


def _run_benchmark(
    cases: List[CaseBytes],
    algorithm: str,
    method: str,
    iterations: int,
    repeats: int,
    warmup: int,
) -> Dict[int, List[float]]:
    crop = algorithm in ("match", "adaptive")
    adaptive = algorithm in ("adaptive", "simple-adaptive")
    timings: Dict[int, List[float]] = {index: [] for index, _, _ in cases}

    def run(target_bytes: bytes, background_bytes: bytes) -> None:
        matcher.locate_piece(
            target_bytes,
            background_bytes,
            crop=crop,
            adaptive=adaptive,
            method=method,
        )

    for _ in range(warmup):
        for _, target_bytes, background_bytes in cases:
            run(target_bytes, background_bytes)

    for _ in range(repeats):
        for _ in range(iterations):
            for index, target_bytes, background_bytes in cases:
                start = time.perf_counter()
                run(target_bytes, background_bytes)
                timings[index].append(time.perf_counter() - start)

    return timings


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark matcher runtime.")
    parser.add_argument("images_dir", help="Directory with cut/bg pairs and pos.txt.")
    parser.add_argument(
        "--algorithm",
        choices=sorted(ALGORITHMS),
        default="match",
        help="Algorithm variant to time.",
    )
    parser.add_argument(
        "--method",
        choices=matcher.CORRELATION_METHODS,
        default="fft",
        help="Correlation backend.",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=5,
        help="Iterations per repeat (per case).",
    )
    parser.add_argument(
        "--repeats",
        type=int,
        default=3,
        help="Repeat count for the iteration loop.",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=1,
        help="Warmup passes before timing.",
    )
    parser.add_argument(
        "--case",
        type=int,
        action="append",
        default=[],
        help="Case index to benchmark (repeatable).",
    )
    args = parser.parse_args()

    cases = _load_cases(discover_cases(args.images_dir), args.case)
    if not cases:
        raise FileNotFoundError(f"No cases found in {args.images_dir}")

    timings = _run_benchmark(
        cases=cases,
        algorithm=args.algorithm,
        method=args.method,
        iterations=args.iterations,
        repeats=args.repeats,
        warmup=args.warmup,
    )

    total_runs = sum(len(v) for v in timings.values())
    print(
        f"Runs: {total_runs} | cases: {len(cases)} | "
        f"iterations: {args.iterations} | repeats: {args.repeats} | warmup: {args.warmup}"
    )
    print(f"algorithm: {args.algorithm} | method: {args.method}")

    combined = []
    for index, values in timings.items():
        combined.extend(values)
        sorted_vals = sorted(values)
        print(
            f"case {index}: median {_format_ms(statistics.median(sorted_vals))}, "
            f"mean {_format_ms(statistics.mean(sorted_vals))}, "
            f"p95 {_format_ms(_percentile(sorted_vals, 95))}, "
            f"min {_format_ms(sorted_vals[0])}, "
            f"max {_format_ms(sorted_vals[-1])}"
        )

    if combined:
        sorted_all = sorted(combined)
        print(
            f"overall: median {_format_ms(statistics.median(sorted_all))}, "
            f"mean {_format_ms(statistics.mean(sorted_all))}, "
            f"p95 {_format_ms(_percentile(sorted_all, 95))}, "
            f"min {_format_ms(sorted_all[0])}, "
            f"max {_format_ms(sorted_all[-1])}"
        )


if __name__ == "__main__":
    main()
