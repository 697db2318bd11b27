"""Interface to the authoritative athlete data the cache warmer recomputes from."""

import abc
from typing import Any, List


class AthleteDataSource(abc.ABC):
    """Abstract Base Class for loading per-athlete data on a cache miss."""

    @abc.abstractmethod
    def fetch(self, identity: str, group: str, kind: str) -> Any:
        """Computes the value for one cache kind of one athlete.

        Args:
            identity: The athlete identifier.
            group: The warm group the kind belongs to (e.g. 'profile').
            kind: The cache kind (e.g. 'meta', 'goals').

        Returns:
            The value to cache.

        Raises:
            UnknownCacheKindError: If the kind is not supported for the group.
        """
        pass

    @abc.abstractmethod
    def active_identities(self, since: float, limit: int) -> List[str]:
        """Lists athletes active after `since`, most recent first.

        Args:
            since: Unix timestamp; only athletes active after it are returned.
            limit: Maximum number of identities to return.
        """
        pass
