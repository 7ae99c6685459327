"""
Activity Trail and Structured Logging

DESIGN DECISION: Every change to an entry is recorded twice:
1. As an activity_logs row, written in the SAME transaction as the
   change itself, so the trail can never disagree with the ledger
2. As a structured log event after commit, for debugging

configure_logging() sets up structlog once per process. Modules log
through structlog.get_logger(__name__).
"""

import logging
from typing import Optional

import structlog

from cashlia.models.activity import ActivityLog
from cashlia.store import Eq, Insert, LocalStore, Select, order


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for JSON output through the stdlib logger."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ActivityTrail:
    """
    Entry activity persistence and logging.

    Repositories call insert_statement() to include the log row in their
    own transaction, then announce() once it has committed.
    """

    def __init__(self, store: LocalStore):
        self._store = store
        self._logger = structlog.get_logger(__name__)

    def insert_statement(self, log: ActivityLog) -> Insert:
        return Insert("activity_logs", log.to_row())

    def announce(self, log: ActivityLog) -> None:
        self._logger.info("entry_activity", **log.to_log_dict())

    async def list_for_entry(self, entry_id: str, limit: Optional[int] = None) -> list[ActivityLog]:
        """Activity of one entry, newest first."""
        rows = await self._store.query(Select(
            "activity_logs",
            where=Eq("entry_id", entry_id),
            order_by=order("-created_at"),
            limit=limit,
        ))
        return [ActivityLog.model_validate(row) for row in rows]
