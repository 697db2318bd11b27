"""Observer contract between the CacheService and anything watching its traffic."""

import abc

from ..events.cache_events import CacheEvent


class CacheObserver(abc.ABC):
    """Receives events published by the CacheService."""

    @abc.abstractmethod
    def on_event(self, event: CacheEvent) -> None:
        """Handles one cache event.

        Called synchronously on the request path, so implementations must be
        cheap. Exceptions are caught and logged by the publisher.
        """
        pass
