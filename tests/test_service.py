"""
Tests for the read-side service facade.
"""

from unittest.mock import MagicMock

from sms_store.service import SmsService


class TestSmsService:
    def test_get_messages_for_user_delegates(self):
        repo = MagicMock()
        repo.find_by_owner.return_value = ["r1", "r2"]

        result = SmsService(repo).get_messages_for_user("+15551234567")

        repo.find_by_owner.assert_called_once_with("+15551234567")
        assert result == ["r1", "r2"]

    def test_get_messages_for_unknown_user_is_empty_list(self, repository):
        result = SmsService(repository).get_messages_for_user("+15550000000")
        assert result == []

    def test_never_returns_none(self):
        repo = MagicMock()
        repo.find_by_owner.return_value = None

        assert SmsService(repo).get_messages_for_user("+15551234567") == []

    def test_recent_and_count(self):
        repo = MagicMock()
        repo.find_recent_by_owner.return_value = ["r1"]
        repo.count_by_owner.return_value = 12
        service = SmsService(repo)

        assert service.get_recent_messages("+15551234567", 1) == ["r1"]
        assert service.get_message_count("+15551234567") == 12
        repo.find_recent_by_owner.assert_called_once_with("+15551234567", 1)
