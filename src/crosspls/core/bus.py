"""Event bus for lifecycle and host notifications.

Events are defined once with a Pydantic model describing their properties
and delivered to subscribers as :class:`EventPayload` objects. The active
bus is bound through a ContextVar, so every host context can own its own.

Example:
    class ServerExitedProps(BaseModel):
        pid: int
        code: int

    ServerExited = BusEvent.define("server.exited", ServerExitedProps)

    unsubscribe = Bus.subscribe(ServerExited, lambda payload: print(payload.properties))
    await Bus.publish(ServerExited, ServerExitedProps(pid=42, code=0))
    unsubscribe()
"""

import traceback
from contextvars import ContextVar, Token
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar('T', bound=BaseModel)

# Lazy logger to avoid circular imports
_log: Optional[Any] = None


def _get_log():
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


class BusEvent(Generic[T]):
    """Event definition with type and properties schema.

    Attributes:
        type: Unique event type identifier (e.g., "session.state")
        properties_type: Pydantic model class for event properties
    """

    def __init__(self, event_type: str, properties_type: type[T]):
        self.type = event_type
        self.properties_type = properties_type

    @staticmethod
    def define(event_type: str, properties_type: type[T]) -> 'BusEvent[T]':
        """Define and register a new event type."""
        event = BusEvent(event_type, properties_type)
        _registry[event_type] = event
        return event


# Global event registry for introspection
_registry: Dict[str, BusEvent] = {}


class EventPayload(BaseModel):
    """Payload structure delivered to event subscribers."""
    type: str
    properties: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


_bus_var: ContextVar['Bus'] = ContextVar('_bus_var')


class Bus:
    """Event bus for publishing and subscribing to events.

    ContextVar-backed: the host binds an instance with :meth:`provide` and
    class methods resolve it transparently.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[SubscriptionCallback]] = {}

    @classmethod
    def _current(cls) -> 'Bus':
        try:
            return _bus_var.get()
        except LookupError:
            raise RuntimeError("No Bus is bound to the current context")

    @classmethod
    def active(cls) -> Optional['Bus']:
        """Return the bound bus, or None when nothing is bound."""
        return _bus_var.get(None)

    @classmethod
    def provide(cls, bus: 'Bus') -> Token['Bus']:
        return _bus_var.set(bus)

    @classmethod
    def restore(cls, token: Token['Bus']) -> None:
        _bus_var.reset(token)

    @classmethod
    async def publish(cls, event: BusEvent[T], properties: T) -> None:
        if not isinstance(properties, event.properties_type):
            if isinstance(properties, dict):
                properties = event.properties_type(**properties)
            else:
                raise TypeError(
                    f"Properties must be instance of {event.properties_type.__name__}"
                )

        payload = EventPayload(
            type=event.type,
            properties=properties.model_dump(mode="json"),
        )

        bus = cls._current()
        callbacks = []
        for key in [event.type, "*"]:
            callbacks.extend(bus._subscriptions.get(key, []))

        for callback in callbacks:
            try:
                result = callback(payload)
                if hasattr(result, '__await__'):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": str(e),
                    "type": event.type,
                    "traceback": traceback.format_exc(),
                })

    @classmethod
    def subscribe(cls, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._raw_subscribe(event.type, callback)

    @classmethod
    def subscribe_all(cls, callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._raw_subscribe("*", callback)

    def _raw_subscribe(
        self,
        event_type: str,
        callback: SubscriptionCallback,
    ) -> Callable[[], None]:
        self._subscriptions.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(event_type, [])
            if callback in subs:
                subs.remove(callback)

        return unsubscribe
