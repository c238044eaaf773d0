"""Read-side facade used by the HTTP handlers.

Kept separate from the route functions so handlers stay small and the
"always a list" contract of the read API lives in one place.
"""

from __future__ import annotations

import structlog

from .models import SmsRecord
from .mongo import SmsRepository

logger = structlog.get_logger(__name__)


class SmsService:
    def __init__(self, repository: SmsRepository):
        self.repository = repository

    def get_messages_for_user(self, user_id: str) -> list[SmsRecord]:
        """Return every message for a user, newest first. Never None."""
        records = self.repository.find_by_owner(user_id) or []
        logger.info("Retrieved messages", user_id=user_id, count=len(records))
        return records

    def get_recent_messages(self, user_id: str, limit: int) -> list[SmsRecord]:
        records = self.repository.find_recent_by_owner(user_id, limit) or []
        logger.info("Retrieved recent messages", user_id=user_id, limit=limit, count=len(records))
        return records

    def get_message_count(self, user_id: str) -> int:
        return self.repository.count_by_owner(user_id)
