"""Benchmark: Session ID generation throughput — identifiers per second."""
from __future__ import annotations

import json
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from db_session_handler.identifiers import SessionIdGenerator

_ITERATIONS: int = 20_000


def bench_id_generation_throughput() -> dict[str, object]:
    """Benchmark SessionIdGenerator.generate() at the default length.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms, unique.
    """
    generator = SessionIdGenerator()
    seen: set[str] = set()

    t0 = time.perf_counter()
    for _ in range(_ITERATIONS):
        seen.add(generator.generate(256))
    total = time.perf_counter() - t0

    result: dict[str, object] = {
        "operation": "id_generation_throughput",
        "iterations": _ITERATIONS,
        "total_seconds": round(total, 4),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "avg_latency_ms": round(total * 1000 / _ITERATIONS, 4),
        "unique": len(seen) == _ITERATIONS,
    }
    print(
        f"[bench_id_generation] {result['operation']}: "
        f"{result['ops_per_second']:,.0f} ids/sec  unique={result['unique']}"
    )
    return result


def run_benchmark() -> dict[str, object]:
    """Entry point returning the benchmark result dict."""
    return bench_id_generation_throughput()


if __name__ == "__main__":
    result = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "throughput_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=2)
    print(f"Results saved to {output_path}")
