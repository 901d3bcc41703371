"""Benchmark: annotation save and read latency (p50/p95/mean).

Saves go through the full read-merge-rename cycle, including fsync, so
the numbers mostly reflect the filesystem the temporary root lives on.
Point ``TMPDIR`` at a network mount to measure a shared root.
"""
from __future__ import annotations

import json
import sys
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from linenote.store import AnnotationStore

_WARMUP: int = 20
_ITERATIONS: int = 500

_CONTEXT = [
    "def handler(request):",
    "    user = request.user",
    "    if not user.is_active:",
    "        raise PermissionDenied()",
    "    payload = parse(request.body)",
    "    return respond(payload)",
    "",
]


def _summarize(operation: str, latencies_ms: list[float]) -> dict[str, object]:
    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    total = sum(latencies_ms) / 1000

    result: dict[str, object] = {
        "operation": operation,
        "iterations": n,
        "total_seconds": round(total, 4),
        "ops_per_second": round(n / total, 1) if total else 0.0,
        "avg_latency_ms": round(sum(latencies_ms) / n, 4),
        "p50_ms": round(sorted_lats[int(n * 0.50)], 4),
        "p95_ms": round(sorted_lats[min(int(n * 0.95), n - 1)], 4),
    }
    print(
        f"[bench_latency] {result['operation']}: "
        f"p50={result['p50_ms']:.4f}ms  p95={result['p95_ms']:.4f}ms  "
        f"mean={result['avg_latency_ms']:.4f}ms"
    )
    return result


def _measure(call: Callable[[int], object], iterations: int, warmup: int) -> list[float]:
    for i in range(warmup):
        call(i)
    latencies_ms: list[float] = []
    for i in range(iterations):
        t0 = time.perf_counter()
        call(i)
        latencies_ms.append((time.perf_counter() - t0) * 1000)
    return latencies_ms


def bench_save_latency(iterations: int = _ITERATIONS, warmup: int = _WARMUP) -> dict[str, object]:
    """Benchmark ``save`` into a file that grows to ``iterations`` annotations.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms, p50_ms, p95_ms.
    """
    with tempfile.TemporaryDirectory(prefix="linenote-bench-") as root:
        store = AnnotationStore(root)
        latencies = _measure(
            lambda i: store.save("bench", "src/app.py", i + 1, "bench", f"note {i}", context=_CONTEXT),
            iterations,
            warmup,
        )
    return _summarize("linenote_save_latency", latencies)


def bench_read_latency(iterations: int = _ITERATIONS, warmup: int = _WARMUP) -> dict[str, object]:
    """Benchmark ``read`` of a file holding 200 annotations."""
    with tempfile.TemporaryDirectory(prefix="linenote-bench-") as root:
        store = AnnotationStore(root)
        for line in range(1, 201):
            store.save("bench", "src/app.py", line, "bench", f"note {line}", context=_CONTEXT)
        latencies = _measure(lambda i: store.read("bench", "src/app.py"), iterations, warmup)
    return _summarize("linenote_read_latency_200", latencies)


if __name__ == "__main__":
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)

    for bench_fn, fname in [
        (bench_save_latency, "save_latency_baseline.json"),
        (bench_read_latency, "read_latency_baseline.json"),
    ]:
        result = bench_fn()
        output_path = results_dir / fname
        with open(output_path, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2)
        print(f"Results saved to {output_path}")
