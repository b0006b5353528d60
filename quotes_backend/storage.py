"""
Per-user key/value storage.

The ``quotes`` key is backed by the quotes table: reading it returns the
owner's quote documents and writing it reconciles them. Every other key is
stored as a JSON value in ``user_storage``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from quotes_backend.db import DbClient
from quotes_backend.errors import ValidationError
from quotes_backend.quotes import QuoteRepository, parse_quotes_value

logger = logging.getLogger(__name__)

QUOTES_KEY = "quotes"
MAX_KEY_LENGTH = 128


def _check_key(key: str) -> str:
    if not key or not key.strip():
        raise ValidationError("key", "Storage key is required")
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            "key", f"Storage key must be at most {MAX_KEY_LENGTH} characters"
        )
    return key


class StorageService:
    def __init__(self, repository: QuoteRepository, db: DbClient):
        self.repository = repository
        self.db = db

    def get_value(self, user_id: str, key: str) -> Any:
        key = _check_key(key)
        if key == QUOTES_KEY:
            return self.repository.get_quotes_for_user(user_id)
        return self.db.get_value(user_id, key)

    def set_value(
        self, user_id: str, key: str, value: Any, email: Optional[str] = None
    ) -> Any:
        key = _check_key(key)
        if key == QUOTES_KEY:
            self.repository.replace_quotes(user_id, parse_quotes_value(value), email)
            return self.repository.get_quotes_for_user(user_id)
        self.db.set_value(user_id, key, value, email)
        return self.db.get_value(user_id, key)

    def delete_value(self, user_id: str, key: str) -> None:
        key = _check_key(key)
        if key == QUOTES_KEY:
            self.repository.replace_quotes(user_id, [])
            return
        self.db.delete_value(user_id, key)

    def list_values(self, user_id: str) -> dict:
        values = self.db.list_values(user_id)
        values[QUOTES_KEY] = self.repository.get_quotes_for_user(user_id)
        return values
