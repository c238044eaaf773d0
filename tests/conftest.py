"""
Pytest configuration and shared fixtures.

FakeCollection stands in for a pymongo Collection with just enough behavior
(insert_one, find/sort/limit, count_documents) to exercise ordering and
limits. FakeKafkaConsumer replays a scripted list of poll results and stops
the loop when it runs out.
"""

import json
from threading import Event
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo import DESCENDING

from sms_store.mongo import SmsRepository


class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    def sort(self, keys):
        # Stable sorts applied from the last key to the first
        for key, direction in reversed(keys):
            self.docs.sort(key=lambda d: d[key], reverse=direction == DESCENDING)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __iter__(self):
        return iter(self.docs)


class FakeCollection:
    def __init__(self):
        self.docs = []

    def insert_one(self, doc):
        stored = dict(doc, _id=ObjectId())
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"], acknowledged=True)

    def find(self, filter):
        return FakeCursor(
            d for d in self.docs if all(d.get(k) == v for k, v in filter.items())
        )

    def count_documents(self, filter):
        return len(list(self.find(filter)))


class FakeMessage:
    def __init__(self, value, partition=0, offset=0, error=None):
        self._value = value
        self._partition = partition
        self._offset = offset
        self._error = error

    def value(self):
        return self._value

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset

    def error(self):
        return self._error


class FakeKafkaConsumer:
    """Returns scripted poll results, then sets the stop event.

    A scripted item that is an Exception instance is raised from poll().
    """

    def __init__(self, script, stop_event, on_commit=None):
        self.script = list(script)
        self.stop_event = stop_event
        self.on_commit = on_commit
        self.calls = []
        self.committed = []
        self.closed = False

    def subscribe(self, topics):
        self.calls.append(("subscribe", topics))

    def poll(self, timeout):
        self.calls.append(("poll", timeout))
        if not self.script:
            self.stop_event.set()
            return None
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def commit(self, message=None, asynchronous=True):
        self.calls.append(("commit", message.offset()))
        if self.on_commit is not None:
            self.on_commit(message)
        self.committed.append(message.offset())

    def close(self):
        self.calls.append(("close",))
        self.closed = True


def make_payload(**overrides):
    event = {
        "eventId": "e1",
        "userId": "+15551234567",
        "phoneNumber": "+15559876543",
        "message": "hi",
        "status": "DELIVERED",
        "createdAt": "2025-12-25T10:30:00",
    }
    event.update(overrides)
    return json.dumps(event).encode("utf-8")


@pytest.fixture
def fake_collection():
    return FakeCollection()


@pytest.fixture
def repository(fake_collection):
    return SmsRepository(fake_collection)


@pytest.fixture
def stop_event():
    return Event()


@pytest.fixture
def sample_event_dict():
    return json.loads(make_payload())
