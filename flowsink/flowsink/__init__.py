"""
flowsink - Backpressure-aware buffered writes for asyncio

This package provides:
- BufferedSink: a bounded write queue that tells producers when to pause
- Output devices for files, memory, asyncio streams and S3
- A write-many benchmark comparing write strategies
"""

from flowsink.sink import (
    BufferedSink,
    SinkConfig,
    SinkState,
    FlowSinkError,
    ClosedSinkError,
    FlushError,
    pipe_chunks,
    open_file_sink,
)
from flowsink.devices import (
    OutputDevice,
    FileDevice,
    MemoryDevice,
    StreamDevice,
    S3Device,
)
from flowsink.config import FlowConfig, load_config
from flowsink.bench import BenchResult, run_benchmark, run_all

__version__ = "0.1.0"

__all__ = [
    # Sink
    "BufferedSink",
    "SinkConfig",
    "SinkState",
    "pipe_chunks",
    "open_file_sink",
    # Errors
    "FlowSinkError",
    "ClosedSinkError",
    "FlushError",
    # Devices
    "OutputDevice",
    "FileDevice",
    "MemoryDevice",
    "StreamDevice",
    "S3Device",
    # Config
    "FlowConfig",
    "load_config",
    # Bench
    "BenchResult",
    "run_benchmark",
    "run_all",
]
