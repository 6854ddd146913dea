"""Shared fakes for vaultcue tests."""

import asyncio

import pytest

from vaultcue.errors import StoreError


class FakeSource:
    """Content source backed by a dict."""

    def __init__(self, documents=None):
        self.documents = dict(documents or {})
        self.reads = []

    async def read_content(self, document_id):
        self.reads.append(document_id)
        return self.documents[document_id]


class FakeEmbedder:
    """Returns a fixed-size vector; optionally fails or waits."""

    def __init__(self, delay=0.0, fail_times=0, error=None):
        self.delay = delay
        self.fail_times = fail_times
        self.error = error or RuntimeError("provider unavailable")
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        return [float(len(text)), 0.5, 0.25]


class FakeStore:
    """In-memory chunk store with injectable failures."""

    def __init__(self, upsert_failures=0, delete_failures=0, leaky_delete=False):
        self.chunks = {}
        self.statuses = {}
        self.upsert_failures = upsert_failures
        self.delete_failures = delete_failures
        self.leaky_delete = leaky_delete
        self.upsert_calls = 0
        self.delete_calls = 0

    async def upsert_chunks(self, records):
        self.upsert_calls += 1
        if self.upsert_failures > 0:
            self.upsert_failures -= 1
            raise StoreError("database is locked")
        if records:
            self.chunks[records[0].document_id] = list(records)

    async def delete_chunks(self, document_id):
        self.delete_calls += 1
        if self.delete_failures > 0:
            self.delete_failures -= 1
            raise ConnectionError("connection reset")
        if not self.leaky_delete:
            self.chunks.pop(document_id, None)

    async def count_chunks(self, document_id):
        return len(self.chunks.get(document_id, []))

    async def update_document_status(self, document_id, metadata):
        self.statuses[document_id] = dict(metadata)


class RecordingReporter:
    def __init__(self):
        self.updates = []

    def report_progress(self, update):
        self.updates.append(update)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, message, level):
        self.messages.append((message, level))


async def no_sleep(delay):
    """Stand-in for asyncio.sleep that records nothing and returns at once."""


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def reporter():
    return RecordingReporter()
