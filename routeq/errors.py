"""
Exception types for routeq.

Routing itself never raises for a missing candidate; it degrades to the
configured fallback route. These exceptions cover caller mistakes and
broken configuration.
"""


class RouteqError(Exception):
    """Base class for all routeq errors."""


class ValidationError(RouteqError, ValueError):
    """Malformed arguments, e.g. non-text input to ``enqueue``."""


class NotFoundError(RouteqError, KeyError):
    """Unknown record id, batch id, or pricing key."""

    def __str__(self) -> str:
        # KeyError repr-quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class ConfigError(RouteqError, ValueError):
    """Malformed configuration. Raised at construction time."""
