"""Route group exports."""

from . import health, tracking

__all__ = ["health", "tracking"]
