import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from core.config import Settings
from database.store import DocumentStore
from schemas.readings import Measurement
from services.progress_service import update_progress
from services.webhook_service import forward_measurement

logger = logging.getLogger(__name__)


class MeasurementDispatcher:
    """
    Runs the per-measurement triggers: the progress update and the webhook
    forwarding. Both are started as independent background tasks and are not
    awaited by the caller, so a slow webhook never holds up ingestion.

    Webhook calls run on a pool of their own. With no request timeout a hung
    endpoint can hold every one of those threads, which then only delays
    the annotation of later measurements; storing readings and progress
    updates keep using the loop's default executor.
    """

    def __init__(self, store: DocumentStore, cfg: Settings, http: requests.Session | None = None):
        self.store = store
        self.cfg = cfg
        self.http = http
        self._tasks: set[asyncio.Task] = set()
        self._webhook_pool = ThreadPoolExecutor(
            max_workers=cfg.webhook_max_workers, thread_name_prefix="webhook"
        )

    def dispatch(self, measurement: Measurement) -> None:
        loop = asyncio.get_running_loop()
        if measurement.exercise_id:
            self._spawn(loop, asyncio.to_thread(update_progress, self.store, measurement, self.cfg), "progress")
        self._spawn(loop, self._forward(loop, measurement), "webhook")

    async def _forward(self, loop: asyncio.AbstractEventLoop, measurement: Measurement):
        call = functools.partial(forward_measurement, self.store, measurement, self.cfg, self.http)
        return await loop.run_in_executor(self._webhook_pool, call)

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro, label: str) -> None:
        task = loop.create_task(coro, name=f"{label}-trigger")
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Trigger %s crashed", task.get_name(), exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every dispatched trigger has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, timeout: float = 5.0) -> None:
        """Drain for at most ``timeout`` seconds, then drop webhook calls that have not started."""
        if self._tasks:
            _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
            if still_running:
                logger.warning("Shutting down with %d triggers still running", len(still_running))
        self._webhook_pool.shutdown(wait=False, cancel_futures=True)
