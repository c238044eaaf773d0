"""
Tests for the MongoDB storage gateway.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from pymongo import errors

from sms_store.errors import StorageUnavailable, StorageWriteRejected
from sms_store.models import SmsRecord
from sms_store.mongo import NEWEST_FIRST, SmsRepository, connect, ensure_indexes


def make_record(user_id="+15551234567", hour=10, message="hi"):
    return SmsRecord(
        user_id=user_id,
        phone_number="+15559876543",
        message=message,
        status="DELIVERED",
        created_at=datetime(2025, 12, 25, hour, 0, tzinfo=timezone.utc),
    )


class TestSmsRepositoryQueries:
    """Query behavior against the in-memory collection."""

    def test_insert_returns_storage_id(self, repository, fake_collection):
        storage_id = repository.insert(make_record())

        assert storage_id == str(fake_collection.docs[0]["_id"])
        assert fake_collection.docs[0]["user_id"] == "+15551234567"

    def test_find_by_owner_empty(self, repository):
        result = repository.find_by_owner("+15550000000")

        assert result == []
        assert isinstance(result, list)

    def test_find_by_owner_newest_first(self, repository):
        repository.insert(make_record(hour=8, message="t1"))
        repository.insert(make_record(hour=9, message="t2"))
        repository.insert(make_record(hour=10, message="t3"))

        result = repository.find_by_owner("+15551234567")

        assert [r.message for r in result] == ["t3", "t2", "t1"]
        assert all(r.id is not None for r in result)

    def test_find_by_owner_filters_other_users(self, repository):
        repository.insert(make_record(user_id="+15551234567"))
        repository.insert(make_record(user_id="+15557654321"))

        result = repository.find_by_owner("+15557654321")

        assert len(result) == 1
        assert result[0].user_id == "+15557654321"

    def test_find_recent_by_owner_limits(self, repository):
        for hour in (1, 5, 3, 4, 2):
            repository.insert(make_record(hour=hour, message=f"m{hour}"))

        result = repository.find_recent_by_owner("+15551234567", 2)

        assert [r.message for r in result] == ["m5", "m4"]

    def test_find_recent_by_owner_rejects_non_positive_limit(self, repository):
        with pytest.raises(ValueError):
            repository.find_recent_by_owner("+15551234567", 0)

    def test_count_by_owner(self, repository):
        repository.insert(make_record())
        repository.insert(make_record())
        repository.insert(make_record(user_id="+15557654321"))

        assert repository.count_by_owner("+15551234567") == 2
        assert repository.count_by_owner("+15550000000") == 0


class TestSmsRepositoryErrors:
    """Driver errors are translated into storage errors."""

    def test_insert_connection_failure(self):
        collection = MagicMock()
        collection.insert_one.side_effect = errors.ServerSelectionTimeoutError("no servers")

        with pytest.raises(StorageUnavailable):
            SmsRepository(collection).insert(make_record())

    def test_insert_network_timeout(self):
        collection = MagicMock()
        collection.insert_one.side_effect = errors.NetworkTimeout("timed out")

        with pytest.raises(StorageUnavailable):
            SmsRepository(collection).insert(make_record())

    def test_insert_write_rejected(self):
        collection = MagicMock()
        collection.insert_one.side_effect = errors.WriteError("Document failed validation", code=121)

        with pytest.raises(StorageWriteRejected):
            SmsRepository(collection).insert(make_record())

    def test_insert_duplicate_key_rejected(self):
        collection = MagicMock()
        collection.insert_one.side_effect = errors.DuplicateKeyError("E11000", code=11000)

        with pytest.raises(StorageWriteRejected):
            SmsRepository(collection).insert(make_record())

    def test_find_failure_is_unavailable(self):
        collection = MagicMock()
        collection.find.side_effect = errors.AutoReconnect("connection reset")

        with pytest.raises(StorageUnavailable):
            SmsRepository(collection).find_by_owner("+15551234567")

    def test_count_failure_is_unavailable(self):
        collection = MagicMock()
        collection.count_documents.side_effect = errors.ExecutionTimeout("exceeded", code=50)

        with pytest.raises(StorageUnavailable):
            SmsRepository(collection).count_by_owner("+15551234567")

    def test_find_uses_owner_filter_and_sort(self):
        collection = MagicMock()
        collection.find.return_value.sort.return_value = iter([])

        SmsRepository(collection).find_by_owner("+15551234567")

        collection.find.assert_called_once_with({"user_id": "+15551234567"})
        collection.find.return_value.sort.assert_called_once_with(NEWEST_FIRST)


class TestHealthCheck:
    """Tests for the storage liveness check."""

    def test_health_check_success(self):
        collection = MagicMock()

        SmsRepository(collection).health_check()

        collection.database.client.admin.command.assert_called_once_with("ping")

    def test_health_check_failure(self):
        collection = MagicMock()
        collection.database.client.admin.command.side_effect = errors.ConnectionFailure("down")

        with pytest.raises(StorageUnavailable, match="health check failed"):
            SmsRepository(collection).health_check()


class TestConnection:
    """Tests for connect() and ensure_indexes()."""

    @patch("sms_store.mongo.MongoClient")
    def test_connect_returns_database(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client

        db = connect("mongodb://localhost:27017", "sms_store")

        mock_client.admin.command.assert_called_once_with("ping")
        mock_client.__getitem__.assert_called_once_with("sms_store")
        assert db == mock_client.__getitem__.return_value
        _, kwargs = mock_client_class.call_args
        assert kwargs["maxPoolSize"] == 50
        assert kwargs["minPoolSize"] == 10

    @patch("sms_store.mongo.MongoClient")
    def test_connect_ping_failure_is_fatal(self, mock_client_class):
        mock_client = MagicMock()
        mock_client.admin.command.side_effect = errors.ServerSelectionTimeoutError("no servers")
        mock_client_class.return_value = mock_client

        with pytest.raises(StorageUnavailable):
            connect("mongodb://localhost:27017", "sms_store")

        mock_client.close.assert_called_once()

    def test_ensure_indexes(self):
        collection = MagicMock()
        collection.create_indexes.side_effect = lambda models: [m.document["name"] for m in models]

        names = ensure_indexes(collection)

        assert names == ["idx_user_id", "idx_created_at", "idx_user_id_created_at"]
        last_models = collection.create_indexes.call_args_list[2].args[0]
        assert dict(last_models[0].document["key"]) == {"user_id": 1, "created_at": -1}

    @pytest.mark.parametrize("code", [85, 86])
    def test_ensure_indexes_skips_conflicting_index(self, code):
        collection = MagicMock()

        def create_indexes(models):
            name = models[0].document["name"]
            if name == "idx_user_id":
                raise errors.OperationFailure("Index already exists with a different name", code=code)
            return [name]

        collection.create_indexes.side_effect = create_indexes

        names = ensure_indexes(collection)

        assert names == ["idx_created_at", "idx_user_id_created_at"]
        assert collection.create_indexes.call_count == 3

    def test_ensure_indexes_other_failures_propagate(self):
        collection = MagicMock()
        collection.create_indexes.side_effect = errors.OperationFailure("not authorized", code=13)

        with pytest.raises(errors.OperationFailure):
            ensure_indexes(collection)
