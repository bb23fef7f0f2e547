"""
Integration test: one million small writes through a file-backed sink.

Mirrors the write-many experiment: the producer is much faster than the
disk, so memory use must stay bounded by the high water mark.
"""

import pytest

from flowsink.devices import FileDevice
from flowsink.sink import BufferedSink, SinkConfig

CHUNK_COUNT = 1_000_000
HIGH_WATER_MARK = 16384


@pytest.mark.asyncio
async def test_million_chunks_bounded_and_ordered(tmp_path):
    path = tmp_path / "million.txt"
    sink = BufferedSink(FileDevice(path), SinkConfig(high_water_mark=HIGH_WATER_MARK))
    max_seen = 0

    for index in range(CHUNK_COUNT):
        chunk = b"%07d\n" % index
        accepted = sink.submit(chunk)
        if sink.pending_bytes > max_seen:
            max_seen = sink.pending_bytes
        if not accepted:
            await sink.wait_drained()

    await sink.close()

    assert max_seen <= HIGH_WATER_MARK + 8
    assert sink.max_pending_bytes <= HIGH_WATER_MARK + 8
    assert sink.bytes_flushed == CHUNK_COUNT * 8

    expected = b"".join(b"%07d\n" % index for index in range(CHUNK_COUNT))
    assert path.read_bytes() == expected
