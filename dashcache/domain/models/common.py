"""Value objects shared by the cache, rate limiter and monitor."""

import enum
from typing import Dict, Optional, TypedDict, Union


class FailurePolicy(str, enum.Enum):
    """How a component behaves when its storage backend fails.

    FAIL_OPEN degrades silently (cache miss, request allowed).
    FAIL_CLOSED surfaces the failure (error raised, request denied).
    """

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"

    @classmethod
    def parse(cls, value: Union[str, "FailurePolicy"]) -> "FailurePolicy":
        if isinstance(value, FailurePolicy):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == normalized or policy.name.lower() == normalized:
                return policy
        raise ValueError(f"Unknown failure policy: {value!r}")


# --- Structured Data ---
class RequestContext(TypedDict, total=False):
    """What request-handling code knows about the caller."""
    user_id: Optional[str]
    remote_addr: Optional[str]
    headers: Dict[str, str]
