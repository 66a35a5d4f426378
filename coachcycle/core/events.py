"""In-process notification of applied mutations."""
import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from coachcycle.core.cache import CacheKey
from coachcycle.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MutationApplied:
    kind: str
    affected_keys: tuple[CacheKey, ...] = field(default_factory=tuple)
    student_id: int | None = None


Subscriber = Callable[[MutationApplied], Awaitable[None] | None]


class MutationEvents:
    """
    Fan-out of ``MutationApplied`` events to subscribers.

    Published only after the writes and the owning cache invalidations have
    completed. A failing subscriber is logged and does not prevent delivery
    to the others, nor does it turn a saved mutation into a failed one.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> Callable[[], None]:
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    async def publish(self, event: MutationApplied) -> None:
        for handler in list(self._subscribers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "mutation_subscriber_failed",
                    kind=event.kind,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )

    def __len__(self) -> int:
        return len(self._subscribers)
