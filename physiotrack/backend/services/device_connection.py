"""
Measurement device connections.

A device is two resources acquired and released separately: the port (the
connection handle) and the reader pulling text chunks from it. Both
``ChunkReader.cancel`` and ``DevicePort.close`` may be called any number of
times, in any order, and while a read is in flight.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from abc import ABC, abstractmethod

import serial  # pyserial

from core.errors import DeviceError

logger = logging.getLogger(__name__)


class ChunkReader(ABC):
    @abstractmethod
    async def read(self) -> str | None:
        """Next chunk of text; None once the stream is finished or cancelled."""

    @abstractmethod
    async def cancel(self) -> None: ...


class DevicePort(ABC):
    name: str = "Arduino Device"

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    def open_reader(self) -> ChunkReader: ...

    @abstractmethod
    async def close(self) -> None: ...


# Pushed (browser relayed) streams ------------------------------------------------


class _StreamChunkReader(ChunkReader):
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue
        self._cancelled = False

    async def read(self) -> str | None:
        if self._cancelled:
            return None
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise DeviceError(str(item)) from item
        if item is None or self._cancelled:
            return None
        return item

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        # Wake a pending read.
        self._queue.put_nowait(None)


class StreamDevicePort(DevicePort):
    """
    A device whose bytes arrive from elsewhere, typically a browser holding
    the serial port and relaying decoded text over a WebSocket.
    """

    def __init__(self, name: str = "Browser Serial Device"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._reader: _StreamChunkReader | None = None
        self.is_open = False

    async def open(self) -> None:
        self.is_open = True

    def open_reader(self) -> ChunkReader:
        if not self.is_open:
            raise DeviceError("Port is not open.")
        if self._reader is None:
            self._reader = _StreamChunkReader(self._queue)
        return self._reader

    def feed(self, chunk: str) -> None:
        if self.is_open:
            self._queue.put_nowait(chunk)

    def end(self) -> None:
        """Signal end of stream; the reader drains what was fed and then finishes."""
        self._queue.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self._queue.put_nowait(exc)

    async def close(self) -> None:
        if not self.is_open:
            return
        self.is_open = False
        self._queue.put_nowait(None)


# Server attached serial ports ---------------------------------------------------


class _SerialChunkReader(ChunkReader):
    def __init__(self, conn: serial.Serial):
        self._conn = conn
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._cancelled = False

    def _read_blocking(self) -> bytes:
        return self._conn.read(max(1, self._conn.in_waiting))

    async def read(self) -> str | None:
        while not self._cancelled:
            try:
                data = await asyncio.to_thread(self._read_blocking)
            except (serial.SerialException, OSError, TypeError) as exc:
                # TypeError/OSError surface when the port is closed under a pending read.
                if self._cancelled:
                    return None
                raise DeviceError(f"Serial read failed: {exc}") from exc
            if data:
                return self._decoder.decode(data)
        return None

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        cancel_read = getattr(self._conn, "cancel_read", None)
        if cancel_read is not None:
            try:
                cancel_read()
            except Exception:
                logger.debug("cancel_read failed", exc_info=True)


class SerialDevicePort(DevicePort):
    def __init__(self, port: str, baud_rate: int = 9600, name: str | None = None):
        self.port = port
        self.baud_rate = baud_rate
        self.name = name or f"Arduino Device ({port})"
        self._conn: serial.Serial | None = None

    async def open(self) -> None:
        try:
            # Short timeout so a cancelled reader notices within a few hundred ms.
            self._conn = await asyncio.to_thread(serial.Serial, self.port, self.baud_rate, timeout=0.2)
        except (serial.SerialException, ValueError) as exc:
            raise DeviceError(f"Could not open {self.port}: {exc}") from exc

    def open_reader(self) -> ChunkReader:
        if self._conn is None or not self._conn.is_open:
            raise DeviceError("Serial port not readable.")
        return _SerialChunkReader(self._conn)

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None and conn.is_open:
            await asyncio.to_thread(conn.close)
