"""
Plain Python demo showing BufferedSink backpressure.

This example demonstrates:
1. submit() returning False once the high water mark is exceeded
2. on_drained() notifications when the producer may resume
3. pipe_chunks() driving a large producer with bounded memory

Run this script to see flowsink in action with plain asyncio.
"""

import asyncio
import tempfile
from pathlib import Path

from flowsink import BufferedSink, FileDevice, MemoryDevice, SinkConfig, pipe_chunks


# Example 1: The raw backpressure signal
async def show_signal():
    device = MemoryDevice()
    sink = BufferedSink(device, SinkConfig(high_water_mark=10))

    print("  submit 5 bytes ->", sink.submit(b"AAAAA"), f"(pending={sink.pending_bytes})")
    print("  submit 6 bytes ->", sink.submit(b"BBBBBB"), f"(pending={sink.pending_bytes})")

    # Example 2: Wait for the drain
    sink.on_drained(lambda fut: print(f"  drained, pending={sink.pending_bytes}"))
    await sink.wait_drained()
    print("  submit 1 byte  ->", sink.submit(b"C"))

    await sink.close()
    print(f"  device received {device.getvalue()!r}")


# Example 3: A fast producer writing to disk
async def write_many(path: Path, count: int):
    sink = BufferedSink(FileDevice(path), SinkConfig(high_water_mark=16384))
    chunks = (f" {i} ".encode() for i in range(count))

    total = await pipe_chunks(sink, chunks)
    stats = sink.get_stats()
    print(f"  wrote {total} bytes in {stats['write_calls']} device writes")
    print(f"  max pending bytes: {stats['max_pending_bytes']}")


def main():
    print("=" * 60)
    print("flowsink demo")
    print("=" * 60)

    print("\n1. Backpressure signal (high_water_mark=10):")
    asyncio.run(show_signal())

    print("\n2. One hundred thousand small writes:")
    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(write_many(Path(tmpdir) / "many.txt", 100_000))

    print("\n" + "=" * 60)


if __name__ == "__main__":
    main()
