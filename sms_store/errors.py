"""Exception types used across sms-store.

Ingestion-path errors (DecodeError, StorageError, CommitFailure) are caught
by the consumer loop and only logged. Query-path errors (InvalidIdentifier,
StorageError) are turned into `{error, message}` JSON responses by the
FastAPI exception handlers in `main.py`.
"""

from __future__ import annotations


class SmsStoreError(Exception):
    """Base class for all sms-store errors."""


class ConfigError(SmsStoreError):
    """Required configuration is missing or empty."""


class DecodeError(SmsStoreError):
    """A Kafka message payload could not be decoded into an SmsEvent."""


class StorageError(SmsStoreError):
    """Base class for MongoDB failures."""


class StorageUnavailable(StorageError):
    """MongoDB could not be reached within the operation's deadline."""


class StorageWriteRejected(StorageError):
    """MongoDB refused a well-formed write (validation, duplicate key, ...)."""


class CommitFailure(SmsStoreError):
    """Committing a Kafka offset failed after the record was stored."""


class InvalidIdentifier(SmsStoreError):
    """A user id on the read path does not look like a phone number."""
