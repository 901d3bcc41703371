"""Benchmark: path encoding and host dispatch throughput.

Measures how many names ``encode``/``decode`` can process per second and
how many framed-protocol requests a ``Dispatcher`` can answer per
second when storage is local.
"""
from __future__ import annotations

import json
import sys
import tempfile
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from linenote.host.dispatcher import Dispatcher
from linenote.paths import decode, encode

_ITERATIONS: int = 20_000
_DISPATCH_ITERATIONS: int = 2_000

_PATHS = [
    "src/main/java/com/example/App.java",
    "lib/__init__.py",
    "docs/design_notes/overview.md",
    "a/b.c",
]


def _result(operation: str, iterations: int, total: float) -> dict[str, object]:
    result: dict[str, object] = {
        "operation": operation,
        "iterations": iterations,
        "total_seconds": round(total, 4),
        "ops_per_second": round(iterations / total, 1) if total else 0.0,
        "avg_latency_ms": round(total / iterations * 1000, 4),
    }
    print(
        f"[bench_throughput] {result['operation']}: "
        f"{result['ops_per_second']:,.0f} ops/sec  "
        f"avg {result['avg_latency_ms']:.4f} ms"
    )
    return result


def bench_encode_throughput(iterations: int = _ITERATIONS) -> dict[str, object]:
    """Benchmark an ``encode`` + ``decode`` pair per iteration.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms.
    """
    start = time.perf_counter()
    for i in range(iterations):
        decode(encode("my_project", _PATHS[i % len(_PATHS)]))
    total = time.perf_counter() - start
    return _result("linenote_encode_decode_throughput", iterations, total)


def bench_dispatch_throughput(iterations: int = _DISPATCH_ITERATIONS) -> dict[str, object]:
    """Benchmark ``read`` requests through validation, dispatch and response checks."""
    with tempfile.TemporaryDirectory(prefix="linenote-bench-") as root:
        dispatcher = Dispatcher()
        for line in range(1, 21):
            dispatcher.handle(
                {
                    "action": "save",
                    "storagePath": root,
                    "project": "bench",
                    "filePath": "a/b.c",
                    "line": line,
                    "author": "bench",
                    "text": f"note {line}",
                }
            )
        request = {"action": "read", "storagePath": root, "project": "bench", "filePath": "a/b.c"}

        start = time.perf_counter()
        for _ in range(iterations):
            dispatcher.handle(request)
        total = time.perf_counter() - start
    return _result("linenote_dispatch_read_throughput", iterations, total)


if __name__ == "__main__":
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)

    for bench_fn, fname in [
        (bench_encode_throughput, "encode_throughput_baseline.json"),
        (bench_dispatch_throughput, "dispatch_throughput_baseline.json"),
    ]:
        result = bench_fn()
        output_path = results_dir / fname
        with open(output_path, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2)
        print(f"Results saved to {output_path}")
