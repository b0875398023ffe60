import asyncio
import logging

logger = logging.getLogger(__name__)


async def stop_pump(task: asyncio.Task, label: str) -> None:
    """Cancel a WebSocket push task and log it if it had already died with an error."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("%s push stopped with an error", label)
