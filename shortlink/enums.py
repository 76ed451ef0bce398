"""Status and policy enums shared by the shortlink modules.

Values double as Prometheus label values and JSON field values, so they are
StrEnums and compare equal to their plain string form.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "BackpressurePolicy"]


class HealthStatus(StrEnum):
    """Per-dependency and overall health reported by /health."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Outcome label for resolution metrics."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CacheStatus(StrEnum):
    """cache_hit label for resolution metrics."""

    HIT = "true"
    MISS = "false"


class BackpressurePolicy(StrEnum):
    """What the notification queue does with a new item when it is full."""

    DROP_NEWEST = "drop_newest"
    DROP_OLDEST = "drop_oldest"
