"""Activity trail and logging package."""

from cashlia.audit.logger import ActivityTrail, configure_logging

__all__ = ["ActivityTrail", "configure_logging"]
