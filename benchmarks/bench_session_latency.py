"""Benchmark: Request-cycle latency — per-request p50/p99.

Measures one full locked request cycle (validate, read, write, commit)
through SessionEngine over a SQLite file.
"""
from __future__ import annotations

import json
import sys
import tempfile
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import create_engine

from db_session_handler.session.engine import SessionEngine
from db_session_handler.storage.sql import SQLBackend

_WARMUP: int = 50
_ITERATIONS: int = 2_000


def bench_request_cycle_latency() -> dict[str, object]:
    """Benchmark a SessionEngine request cycle over SQLAlchemy + SQLite.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms, p50_latency_ms, p99_latency_ms.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = create_engine(f"sqlite:///{Path(tmpdir) / 'bench.db'}")
        with engine.connect() as connection:
            backend = SQLBackend(connection)
            backend.create_schema()
            session_id = "b" * 256

            def cycle(i: int) -> None:
                with SessionEngine(backend) as session_engine:
                    session_engine.validate_once(session_id)
                    session_engine.read(session_id)
                    session_engine.write(session_id, f'{{"n":{i}}}'.encode())

            for i in range(_WARMUP):
                cycle(i)

            latencies_ms: list[float] = []
            for i in range(_ITERATIONS):
                t0 = time.perf_counter()
                cycle(i)
                latencies_ms.append((time.perf_counter() - t0) * 1000)
        engine.dispose()

    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    total = sum(latencies_ms) / 1000

    result: dict[str, object] = {
        "operation": "request_cycle_latency",
        "iterations": _ITERATIONS,
        "total_seconds": round(total, 4),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "avg_latency_ms": round(sum(latencies_ms) / n, 4),
        "p50_latency_ms": round(sorted_lats[n // 2], 4),
        "p99_latency_ms": round(sorted_lats[min(int(n * 0.99), n - 1)], 4),
    }
    print(
        f"[bench_session_latency] {result['operation']}: "
        f"p99={result['p99_latency_ms']:.4f}ms  "
        f"mean={result['avg_latency_ms']:.4f}ms"
    )
    return result


def run_benchmark() -> dict[str, object]:
    """Entry point returning the benchmark result dict."""
    return bench_request_cycle_latency()


if __name__ == "__main__":
    result = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "latency_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=2)
    print(f"Results saved to {output_path}")
