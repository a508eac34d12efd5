# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Event bus for loop progress."""

import asyncio
import logging

from collections import defaultdict
from typing import Awaitable, Callable, Union

from ..types.event_types import EventType, Event

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    Publish/subscribe channel for progress events.

    One bus is created per run and passed to the components that report on
    it. Subscriber failures are logged and never reach the publisher.
    """

    def __init__(self, keep_history: bool = True):
        self._subscribers: dict[EventType, list[Subscriber]] = defaultdict(list)
        self._all_subscribers: list[Subscriber] = []
        self._history: list[Event] = []
        self._keep_history = keep_history

    def subscribe(self, event_type: EventType | None, callback: Subscriber) -> None:
        """Subscribe to one event type, or to every event when ``event_type`` is None."""
        if event_type is None:
            self._all_subscribers.append(callback)
        else:
            self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: EventType | None, callback: Subscriber) -> None:
        targets = self._all_subscribers if event_type is None else self._subscribers[event_type]
        if callback in targets:
            targets.remove(callback)

    async def publish(self, event: Event) -> None:
        if self._keep_history:
            self._history.append(event)

        for callback in [*self._subscribers[event.type], *self._all_subscribers]:
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event subscriber for {event.type.value}: {e}")

    async def emit(self, event_type: EventType, content: str, **metadata) -> None:
        await self.publish(Event(type=event_type, content=content, metadata=metadata))

    def get_events(self, event_types: set[EventType] | None = None) -> list[Event]:
        if event_types is None:
            return list(self._history)
        return [e for e in self._history if e.type in event_types]

    def clear(self) -> None:
        self._history.clear()
