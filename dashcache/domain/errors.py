"""Exception types raised across the cache, rate-limit and monitoring core."""


class DashCacheError(Exception):
    """Base class for all dashcache errors."""


class ConfigurationError(DashCacheError):
    """Raised at startup when settings are missing or invalid."""


class StoreError(DashCacheError):
    """Raised by a store backend when the underlying storage fails.

    Absence of a key is never an error; backends return None instead.
    """

    def __init__(self, backend: str, operation: str, original_exception: Exception):
        self.backend = backend
        self.operation = operation
        self.original_exception = original_exception
        super().__init__(f"{backend} {operation} failed: {original_exception}")


class CacheBackendError(DashCacheError):
    """Raised by the CacheService when running under the fail-closed policy."""


class UnknownCacheKindError(DashCacheError, KeyError):
    """Raised by a data source asked for a cache kind it does not know."""

    def __init__(self, group: str, kind: str):
        self.group = group
        self.kind = kind
        super().__init__(f"Unknown cache kind '{kind}' in group '{group}'")

    def __str__(self) -> str:
        return self.args[0]


class AlertDeliveryError(DashCacheError):
    """Raised by an alert channel that could not deliver an alert."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Alert channel '{channel}' failed: {reason}")
