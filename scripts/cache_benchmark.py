#!/usr/bin/env python3
"""
Cache benchmark utility for hit ratio/latency characterization.

Usage examples:
  PYTHONPATH=src python scripts/cache_benchmark.py
  PYTHONPATH=src python scripts/cache_benchmark.py --files 50 --max-files 10 --pipeline gzip
"""

from __future__ import annotations

import argparse
import asyncio
import random
import statistics
import tempfile
import time
from pathlib import Path

from simplycache import InMemoryCacheMetrics, SimplyCache, gzip_stage


async def run_benchmark(
    *,
    files: int,
    file_kb: int,
    requests: int,
    concurrency: int,
    max_files: int,
    chunk_size: int,
    pipeline: str,
    seed: int,
) -> None:
    rng = random.Random(seed)
    metrics = InMemoryCacheMetrics()
    latencies: list[float] = []

    with tempfile.TemporaryDirectory(prefix="simplycache-bench-") as root:
        paths = []
        for index in range(files):
            path = Path(root) / f"file-{index:04d}.bin"
            path.write_bytes(rng.randbytes(file_kb * 1024))
            paths.append(path)

        # Zipf-like skew: low indices are requested far more often.
        weights = [1.0 / (index + 1) for index in range(files)]
        plan = rng.choices(paths, weights=weights, k=requests)

        cache = SimplyCache(
            max_files=max_files,
            chunk_size=chunk_size,
            transform_pipeline=[gzip_stage()] if pipeline == "gzip" else None,
            metrics=metrics,
        )
        semaphore = asyncio.Semaphore(concurrency)

        async def fetch(path: Path) -> None:
            async with semaphore:
                started = time.perf_counter()
                async with cache.stream(path) as handle:
                    await handle.read()
                latencies.append(time.perf_counter() - started)

        started = time.perf_counter()
        await asyncio.gather(*(fetch(path) for path in plan))
        elapsed = time.perf_counter() - started
        stats = cache.stats()
        await cache.aclose()

    hits = metrics.get("cache_hits")
    misses = metrics.get("cache_misses")
    p50 = statistics.median(latencies) if latencies else 0.0
    p95 = sorted(latencies)[int(0.95 * (len(latencies) - 1))] if latencies else 0.0

    print(f"files={files}")
    print(f"file_kb={file_kb}")
    print(f"requests={requests}")
    print(f"concurrency={concurrency}")
    print(f"max_files={max_files}")
    print(f"pipeline={pipeline}")
    print(f"elapsed_s={elapsed:.3f}")
    print(f"throughput_rps={requests / elapsed if elapsed > 0 else 0.0:.2f}")
    print(f"hit_ratio={hits / max(hits + misses, 1):.3f}")
    print(f"evictions={metrics.get('cache_evictions')}")
    print(f"buffered_kb_at_end={stats.buffered_bytes / 1024:.1f}")
    print(f"read_p50_ms={p50 * 1000:.2f}")
    print(f"read_p95_ms={p95 * 1000:.2f}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cache benchmark utility")
    parser.add_argument("--files", type=int, default=40)
    parser.add_argument("--file-kb", type=int, default=64)
    parser.add_argument("--requests", type=int, default=2000)
    parser.add_argument("--concurrency", type=int, default=32)
    parser.add_argument("--max-files", type=int, default=10)
    parser.add_argument("--chunk-size", type=int, default=16 * 1024)
    parser.add_argument("--pipeline", choices=("none", "gzip"), default="none")
    parser.add_argument("--seed", type=int, default=7)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(
        run_benchmark(
            files=args.files,
            file_kb=args.file_kb,
            requests=args.requests,
            concurrency=args.concurrency,
            max_files=args.max_files,
            chunk_size=args.chunk_size,
            pipeline=args.pipeline,
            seed=args.seed,
        )
    )


if __name__ == "__main__":
    main()
