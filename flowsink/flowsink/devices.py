"""
Output device interfaces and implementations.

A device is the slow end of a BufferedSink: it accepts bytes and reports
how many it took. Devices must process writes in the order they are
issued; the sink never has more than one write in flight.

Components:
    OutputDevice (ABC): Interface for all devices
    FileDevice: Local file via os.write on the default executor
    MemoryDevice: In-process bytes buffer
    StreamDevice: asyncio StreamWriter (sockets, pipes)
    S3Device: Local spool file → S3 object on close
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class OutputDevice(ABC):
    """
    Abstract base class for output devices.

    write() may accept fewer bytes than given; the caller retries the
    remainder.
    """

    @abstractmethod
    async def write(self, data: bytes) -> int:
        """
        Write bytes to the device.

        Args:
            data: Bytes to write

        Returns:
            Number of bytes actually written
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close the device and release resources.
        """
        pass


class FileDevice(OutputDevice):
    """
    Local file device.

    The file descriptor is opened eagerly; writes and close run on the
    event loop's default executor so the loop never blocks on disk.
    os.write() may return a short count, which is passed through.
    """

    def __init__(self, path: Union[str, Path], mode: str = "w"):
        """
        Initialize the FileDevice.

        Args:
            path: File to write to. Parent directories are created.
            mode: "w" to truncate, "a" to append
        """
        if mode not in ("w", "a"):
            raise ValueError(f"mode must be 'w' or 'a', got {mode!r}")

        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        flags = os.O_WRONLY | os.O_CREAT
        flags |= os.O_APPEND if mode == "a" else os.O_TRUNC
        self._fd: Optional[int] = os.open(self.path, flags, 0o644)

    async def write(self, data: bytes) -> int:
        fd = self._require_open()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, os.write, fd, data)

    async def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, os.close, fd)
        logger.debug(f"Closed {self.path}")

    def fileno(self) -> int:
        return self._require_open()

    @property
    def closed(self) -> bool:
        return self._fd is None

    def _require_open(self) -> int:
        if self._fd is None:
            raise ValueError(f"write to closed device {self.path}")
        return self._fd


class MemoryDevice(OutputDevice):
    """Collects written bytes in memory."""

    def __init__(self):
        self._buffer = bytearray()
        self.writes: List[int] = []  # Size of each write call
        self.close_calls = 0

    async def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed MemoryDevice")
        self._buffer.extend(data)
        self.writes.append(len(data))
        return len(data)

    async def close(self) -> None:
        self.close_calls += 1

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    @property
    def closed(self) -> bool:
        return self.close_calls > 0


class StreamDevice(OutputDevice):
    """
    Device backed by an asyncio StreamWriter.

    Each write waits for the transport's own flow control (drain) before
    reporting the bytes as written.
    """

    def __init__(self, writer: asyncio.StreamWriter):
        self._writer = writer

    async def write(self, data: bytes) -> int:
        if self._writer.is_closing():
            raise ValueError("write to closed stream")
        self._writer.write(data)
        await self._writer.drain()
        return len(data)

    async def close(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()
        await self._writer.wait_closed()

    @classmethod
    async def connect(cls, host: str, port: int) -> "StreamDevice":
        """Open a TCP connection and wrap its writer."""
        _, writer = await asyncio.open_connection(host, port)
        return cls(writer)


class S3Device(OutputDevice):
    """
    Writes an S3 object with local buffering.

    Strategy:
    1. Spool writes to a local file (fast)
    2. Upload the spool file to s3://{bucket}/{key} on close
    3. Optionally keep the local spool after a successful upload
    """

    def __init__(
        self,
        bucket: str,
        key: str,
        region: str = "us-east-1",
        spool_dir: Optional[Union[str, Path]] = None,
        keep_local: bool = False,
    ):
        """
        Initialize the S3Device.

        Args:
            bucket: S3 bucket name
            key: Object key to upload to
            region: AWS region
            spool_dir: Directory for the local spool file
            keep_local: Whether to keep the spool file after upload

        Requires:
            boto3 library for S3 access
        """
        if not bucket:
            raise ValueError("S3 bucket not configured")

        self.bucket = bucket
        self.key = key
        self.region = region
        self.keep_local = keep_local
        self._s3_client = None

        if spool_dir is not None:
            Path(spool_dir).mkdir(parents=True, exist_ok=True)
        fd, spool_path = tempfile.mkstemp(
            prefix="flowsink-", suffix=".part", dir=str(spool_dir) if spool_dir else None
        )
        os.close(fd)
        self.spool_path = Path(spool_path)
        self._spool = FileDevice(self.spool_path, mode="w")
        self._closed = False

    def _get_s3_client(self):
        """Lazy initialization of S3 client."""
        if self._s3_client is None:
            try:
                import boto3
            except ImportError:
                logger.error("boto3 not installed. Run: pip install flowsink[s3]")
                raise
            self._s3_client = boto3.client("s3", region_name=self.region)
        return self._s3_client

    async def write(self, data: bytes) -> int:
        return await self._spool.write(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._spool.close()

        s3 = self._get_s3_client()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, s3.upload_file, str(self.spool_path), self.bucket, self.key
        )
        logger.debug(f"Uploaded {self.spool_path.name} to s3://{self.bucket}/{self.key}")

        if not self.keep_local:
            self.spool_path.unlink()
