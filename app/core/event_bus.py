import asyncio
import inspect
from typing import Any, Callable, Dict, List

from app.shared.utils import logger


class EventBus:
    def __init__(self, handler_timeout: float = 5.0):
        self.subscriptions: Dict[str, List[Callable]] = {}
        self.handler_timeout = handler_timeout
        self.log = logger.get_logger("event_bus")

    async def publish(self, event_name: str, event_data: Any):
        if event_name in self.subscriptions:
            tasks = []
            for handler in self.subscriptions[event_name]:
                tasks.append(self._run_handler(handler, event_data))
            await asyncio.gather(*tasks)

    async def _run_handler(self, handler: Callable, event_data: Any):
        try:
            await asyncio.wait_for(
                handler(event_data)
                if inspect.iscoroutinefunction(handler)
                else asyncio.to_thread(handler, event_data),
                timeout=self.handler_timeout,
            )
        except asyncio.TimeoutError:
            self.log.error(f"Handler timed out: {getattr(handler, '__name__', handler)}")
        except Exception as e:
            self.log.error(f"Error in event handler: {e}")

    def subscribe(self, event_name: str, handler: Callable[[Any], None]):
        handlers = self.subscriptions.setdefault(event_name, [])
        if handler in handlers:
            return
        handlers.append(handler)
        self.log.debug(f"Subscribed handler to: {event_name}")

    def unsubscribe(self, event_name: str, handler: Callable[[Any], None]):
        handlers = self.subscriptions.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)
