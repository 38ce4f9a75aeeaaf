"""Consumes member events and runs the registered handlers.

Handlers are the outbound side effects (welcome email, roster sync). Each
handler is retried on its own and a handler that keeps failing is logged and
skipped; it never affects the other handlers or the membership state.
"""

from typing import Awaitable, Callable, Dict, List, Optional

from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from clubhouse.core.logging import logger
from clubhouse.core.redis_client import RedisClient, redis_client
from clubhouse.platform.notifications.publisher import make_channel
from clubhouse.schemas.member_event import MemberEvent, MemberEventType

EventHandler = Callable[[MemberEvent], Awaitable[None]]


class MemberEventDispatcher:
    """Routes member events to handlers registered per event type."""

    def __init__(
        self,
        client: Optional[RedisClient] = None,
        max_attempts: int = 3,
        wait_min: float = 0.5,
        wait_max: float = 8,
    ):
        """Initialize the dispatcher."""
        self.client = client or redis_client
        self.max_attempts = max_attempts
        self.wait_min = wait_min
        self.wait_max = wait_max
        self._handlers: Dict[MemberEventType, List[EventHandler]] = {}
        self.logger = logger.with_context(component="member_event_dispatcher")

    def register(self, event_type: MemberEventType, handler: EventHandler) -> None:
        """Register a handler for an event type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event_type: MemberEventType) -> List[EventHandler]:
        """Handlers registered for an event type."""
        return list(self._handlers.get(event_type, []))

    async def dispatch(self, event: MemberEvent) -> Dict[str, bool]:
        """Run every handler for the event.

        Returns:
            Dict[str, bool]: Outcome per handler name.
        """
        outcomes: Dict[str, bool] = {}
        for handler in self.handlers_for(event.type):
            name = getattr(handler, "__qualname__", repr(handler))
            log = self.logger.with_context(
                event_type=event.type.value, user_id=str(event.user_id), handler=name
            )
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_exponential(multiplier=self.wait_min, max=self.wait_max),
                    reraise=False,
                ):
                    with attempt:
                        await handler(event)
                outcomes[name] = True
            except RetryError as e:
                log.error(
                    f"Handler failed after {self.max_attempts} attempts: "
                    f"{e.last_attempt.exception()}"
                )
                outcomes[name] = False
        return outcomes

    async def handle_message(self, message: Optional[dict]) -> Optional[Dict[str, bool]]:
        """Decode one pub/sub message and dispatch it. Non-data messages are ignored."""
        if not message or message.get("type") != "message":
            return None
        try:
            event = MemberEvent.model_validate_json(message["data"])
        except ValueError as e:
            self.logger.warning(f"Dropping malformed member event: {e}")
            return None
        return await self.dispatch(event)

    async def listen(self) -> None:
        """Subscribe to every event channel and dispatch until cancelled."""
        pubsub = self.client.pubsub_client.pubsub()
        channels = [make_channel(event_type) for event_type in MemberEventType]
        await pubsub.subscribe(*channels)
        self.logger.info(f"Listening for member events on {', '.join(channels)}")
        try:
            async for message in pubsub.listen():
                await self.handle_message(message)
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
