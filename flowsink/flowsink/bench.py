"""
Write-many benchmark.

Writes `count` small chunks (" 0 ", " 1 ", ...) to a file with different
strategies and times each one:

    awaited   - await device.write() for every chunk
    sync      - blocking os.write() for every chunk on the loop thread
    streamed  - BufferedSink with backpressure (pipe_chunks)

Firing every write without waiting for completion is not offered: it
has no memory bound and produces nothing the streamed strategy doesn't.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .devices import FileDevice
from .sink import BufferedSink, SinkConfig, pipe_chunks

logger = logging.getLogger(__name__)

STRATEGIES = ("awaited", "sync", "streamed")


@dataclass
class BenchResult:
    """Timing of one strategy run."""
    strategy: str
    count: int
    bytes_written: int
    seconds: float
    max_pending_bytes: Optional[int] = None  # streamed only

    @property
    def writes_per_second(self) -> float:
        return self.count / self.seconds if self.seconds > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "strategy": self.strategy,
            "count": self.count,
            "bytes_written": self.bytes_written,
            "seconds": round(self.seconds, 4),
            "writes_per_second": round(self.writes_per_second, 1),
            "max_pending_bytes": self.max_pending_bytes,
        }


def generate_chunks(count: int) -> Iterator[bytes]:
    for index in range(count):
        yield f" {index} ".encode()


async def _write_awaited(path: Path, count: int, config: SinkConfig) -> BenchResult:
    device = FileDevice(path)
    total = 0
    start = time.perf_counter()
    try:
        for chunk in generate_chunks(count):
            offset = 0
            while offset < len(chunk):
                offset += await device.write(chunk[offset:])
            total += len(chunk)
    finally:
        await device.close()
    return BenchResult("awaited", count, total, time.perf_counter() - start)


async def _write_sync(path: Path, count: int, config: SinkConfig) -> BenchResult:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    total = 0
    start = time.perf_counter()
    try:
        for chunk in generate_chunks(count):
            offset = 0
            while offset < len(chunk):
                offset += os.write(fd, chunk[offset:])
            total += len(chunk)
    finally:
        os.close(fd)
    return BenchResult("sync", count, total, time.perf_counter() - start)


async def _write_streamed(path: Path, count: int, config: SinkConfig) -> BenchResult:
    sink = BufferedSink(FileDevice(path), config)
    start = time.perf_counter()
    total = await pipe_chunks(sink, generate_chunks(count))
    return BenchResult(
        "streamed",
        count,
        total,
        time.perf_counter() - start,
        max_pending_bytes=sink.max_pending_bytes,
    )


_RUNNERS: Dict[str, Callable[..., Any]] = {
    "awaited": _write_awaited,
    "sync": _write_sync,
    "streamed": _write_streamed,
}


async def run_benchmark(
    strategy: str,
    path: Union[str, Path],
    count: int = 1_000_000,
    config: Optional[SinkConfig] = None,
) -> BenchResult:
    """
    Run one strategy, writing to path.

    Args:
        strategy: One of STRATEGIES
        path: Output file (truncated)
        count: Number of chunks to write
        config: Sink configuration for the streamed strategy

    Returns:
        BenchResult with timing

    Raises:
        ValueError: For an unknown strategy
    """
    if strategy not in _RUNNERS:
        raise ValueError(
            f"Unknown strategy {strategy!r}, expected one of {', '.join(STRATEGIES)}"
        )

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Running {strategy} benchmark: {count} writes to {path}")
    result = await _RUNNERS[strategy](path, count, config or SinkConfig())
    logger.info(f"{strategy}: {result.seconds:.3f}s")
    return result


async def run_all(
    output_dir: Union[str, Path],
    count: int = 1_000_000,
    strategies: Optional[List[str]] = None,
    config: Optional[SinkConfig] = None,
) -> List[BenchResult]:
    """Run strategies one after another, each into {output_dir}/{strategy}.txt"""
    output_dir = Path(output_dir)
    results = []
    for strategy in strategies or STRATEGIES:
        results.append(
            await run_benchmark(strategy, output_dir / f"{strategy}.txt", count, config)
        )
    return results


def format_results(results: List[BenchResult]) -> str:
    """Render results as a fixed-width table."""
    lines = [
        f"{'strategy':<10} {'writes':>10} {'bytes':>12} {'seconds':>9} {'max pending':>12}",
        "-" * 57,
    ]
    for r in results:
        pending = "-" if r.max_pending_bytes is None else str(r.max_pending_bytes)
        lines.append(
            f"{r.strategy:<10} {r.count:>10} {r.bytes_written:>12} {r.seconds:>9.3f} {pending:>12}"
        )
    return "\n".join(lines)
