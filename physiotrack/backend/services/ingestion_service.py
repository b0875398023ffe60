from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from schemas.devices import DeviceStatus
from schemas.readings import ParsedReading
from services.device_connection import ChunkReader, DevicePort
from services.measurement_service import MeasurementRecorder, now_ms
from services.serial_parser import parse_serial_line

logger = logging.getLogger(__name__)

ExerciseIdResolver = Callable[[str], Awaitable[str | None]]
ReadingListener = Callable[[ParsedReading], None]

# How long disconnect waits for the read loop to notice the cancelled reader.
_READ_LOOP_GRACE_SEC = 2.0


def split_records(buffer: str, chunk: str) -> tuple[list[str], str]:
    """Append a chunk to the carry-over buffer; return complete lines and the new carry-over."""
    *lines, rest = (buffer + chunk).split("\n")
    return lines, rest


class DeviceIngestion:
    """
    One patient's device connection: a read loop turning device text into
    readings, and a persistence worker storing them while recording.
    """

    def __init__(
        self,
        patient_id: str,
        recorder: MeasurementRecorder,
        exercise_id_resolver: ExerciseIdResolver | None = None,
    ):
        self.patient_id = patient_id
        self.recorder = recorder
        self.exercise_id_resolver = exercise_id_resolver

        self.connected = False
        self.device_name: str | None = None
        self.latest_reading: ParsedReading | None = None
        self.exercise_id: str | None = None

        self._port: DevicePort | None = None
        self._reader: ChunkReader | None = None
        self._read_task: asyncio.Task | None = None
        self._persist_task: asyncio.Task | None = None
        self._pending: asyncio.Queue | None = None
        self._listeners: list[ReadingListener] = []

    @property
    def is_recording(self) -> bool:
        return self.exercise_id is not None

    def status(self) -> DeviceStatus:
        return DeviceStatus(
            connected=self.connected,
            device_name=self.device_name,
            current_reading=self.latest_reading,
            is_recording=self.is_recording,
            exercise_id=self.exercise_id,
        )

    def is_connected_to(self, port: DevicePort) -> bool:
        return self._port is port

    def add_listener(self, listener: ReadingListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ReadingListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Connection ---------------------------------------------------------

    async def connect(self, port: DevicePort) -> None:
        await self.disconnect()

        await port.open()
        try:
            reader = port.open_reader()
        except Exception:
            await port.close()
            raise

        self._port = port
        self._reader = reader
        self.connected = True
        self.device_name = port.name
        self._pending = asyncio.Queue()
        self._persist_task = asyncio.create_task(self._persist_loop(self._pending))
        self._read_task = asyncio.create_task(self._read_loop(reader, self._pending))
        logger.info("Connected %s for patient %s", port.name, self.patient_id)

    async def disconnect(self) -> None:
        await self._release()

        read_task, self._read_task = self._read_task, None
        if read_task is not None and read_task is not asyncio.current_task():
            done, _ = await asyncio.wait({read_task}, timeout=_READ_LOOP_GRACE_SEC)
            if not done:
                read_task.cancel()
                try:
                    await read_task
                except asyncio.CancelledError:
                    pass

        persist_task, self._persist_task = self._persist_task, None
        if persist_task is not None:
            if self._pending is not None:
                self._pending.put_nowait(None)
            await persist_task
        self._pending = None

        was_connected = self.device_name is not None
        self.connected = False
        self.device_name = None
        self.latest_reading = None
        if was_connected:
            logger.info("Disconnected device for patient %s", self.patient_id)

    async def wait_closed(self) -> None:
        """Wait for the read loop to finish on its own (end of stream or failure)."""
        task = self._read_task
        if task is not None:
            await asyncio.wait({task})
        persist = self._persist_task
        if persist is not None:
            await asyncio.wait({persist})

    async def _release(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None:
            try:
                await reader.cancel()
            except Exception:
                logger.warning("Releasing device reader failed", exc_info=True)

        port, self._port = self._port, None
        if port is not None:
            try:
                await port.close()
            except Exception:
                logger.warning("Closing device port failed", exc_info=True)

    # Loops --------------------------------------------------------------

    async def _read_loop(self, reader: ChunkReader, pending: asyncio.Queue) -> None:
        buffer = ""
        try:
            while True:
                chunk = await reader.read()
                if chunk is None:
                    break
                if not chunk:
                    continue
                lines, buffer = split_records(buffer, chunk)
                for line in lines:
                    self._handle_line(line, pending)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Device read loop for patient %s failed", self.patient_id)
        finally:
            self.connected = False
            pending.put_nowait(None)
            await self._release()

    def _handle_line(self, line: str, pending: asyncio.Queue) -> None:
        reading = parse_serial_line(line)
        if reading is None:
            return

        self.latest_reading = reading
        for listener in list(self._listeners):
            try:
                listener(reading)
            except Exception:
                logger.exception("Reading listener failed")

        if self.exercise_id is not None:
            pending.put_nowait((reading, self.exercise_id, self.device_name, now_ms()))

    async def _persist_loop(self, pending: asyncio.Queue) -> None:
        while True:
            item = await pending.get()
            if item is None:
                return
            reading, exercise_id, device, timestamp = item
            try:
                await self.recorder.record(
                    self.patient_id, reading, exercise_id=exercise_id, device=device, timestamp=timestamp
                )
            except Exception:
                logger.exception("Persisting reading for patient %s failed", self.patient_id)

    # Recording ----------------------------------------------------------

    async def start_recording(self, exercise_id: str | None = None) -> str:
        if not exercise_id:
            exercise_id = await self._resolve_exercise_id()
        self.exercise_id = exercise_id
        logger.info("Recording for patient %s, exercise %s", self.patient_id, exercise_id)
        return exercise_id

    def stop_recording(self) -> None:
        if self.exercise_id is not None:
            logger.info("Recording stopped for patient %s", self.patient_id)
        self.exercise_id = None

    async def _resolve_exercise_id(self) -> str:
        if self.exercise_id_resolver is None:
            return f"manual-{now_ms()}"
        try:
            resolved = await self.exercise_id_resolver(self.patient_id)
        except Exception:
            logger.exception("Failed to get exercise id for patient %s", self.patient_id)
            return "unknown"
        return resolved or f"manual-{now_ms()}"


class DeviceRegistry:
    """At most one live ingestion per patient."""

    def __init__(self, recorder: MeasurementRecorder, exercise_id_resolver: ExerciseIdResolver | None = None):
        self.recorder = recorder
        self.exercise_id_resolver = exercise_id_resolver
        self._devices: dict[str, DeviceIngestion] = {}

    def get(self, patient_id: str) -> DeviceIngestion | None:
        return self._devices.get(patient_id)

    def get_or_create(self, patient_id: str) -> DeviceIngestion:
        ingestion = self._devices.get(patient_id)
        if ingestion is None:
            ingestion = DeviceIngestion(patient_id, self.recorder, self.exercise_id_resolver)
            self._devices[patient_id] = ingestion
        return ingestion

    async def connect(self, patient_id: str, port: DevicePort) -> DeviceIngestion:
        ingestion = self.get_or_create(patient_id)
        await ingestion.connect(port)
        return ingestion

    async def disconnect(self, patient_id: str) -> None:
        ingestion = self._devices.get(patient_id)
        if ingestion is not None:
            await ingestion.disconnect()

    async def shutdown(self) -> None:
        for ingestion in list(self._devices.values()):
            await ingestion.disconnect()
        self._devices.clear()
