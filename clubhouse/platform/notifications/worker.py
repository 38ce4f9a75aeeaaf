"""Member event worker.

Run with ``python -m clubhouse.platform.notifications.worker``. The API only
publishes; this process subscribes and runs the registered handlers.
"""

import asyncio
import signal
from typing import Any, Optional

from clubhouse.core.logging import logger
from clubhouse.core.redis_client import RedisClient, redis_client
from clubhouse.platform.notifications.dispatcher import MemberEventDispatcher
from clubhouse.schemas.member_event import MemberEvent, MemberEventType


async def log_member_event(event: MemberEvent) -> None:
    """Audit trail of every member event."""
    logger.with_context(event_type=event.type.value, user_id=str(event.user_id)).info(
        f"Member event {event.type.value} occurred at {event.occurred_at.isoformat()}"
    )


def build_dispatcher(client: Optional[RedisClient] = None) -> MemberEventDispatcher:
    """Dispatcher with the default handlers registered for every event type."""
    dispatcher = MemberEventDispatcher(client=client)
    for event_type in MemberEventType:
        dispatcher.register(event_type, log_member_event)
    return dispatcher


class MemberEventWorker:
    """Long-running consumer of member events."""

    def __init__(self, dispatcher: Optional[MemberEventDispatcher] = None) -> None:
        """Initialize the worker."""
        self.dispatcher = dispatcher or build_dispatcher()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Listen until the subscription ends or the worker is stopped."""
        logger.info("Starting member event worker")
        self._task = asyncio.create_task(self.dispatcher.listen())
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Member event worker cancelled")
        except Exception as e:
            logger.error(f"Error in member event worker: {e}")
            raise

    async def stop(self) -> None:
        """Cancel the listener and close Redis connections."""
        if self._task and not self._task.done():
            logger.info("Stopping member event worker...")
            self._task.cancel()
        await self.dispatcher.client.close()


async def main() -> None:
    """Main function to run the worker."""
    worker = MemberEventWorker()

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        asyncio.create_task(worker.stop())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    finally:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
