"""Shared fixtures: an in-memory stand-in for the Meilisearch wrapper and HTTP response helpers."""
import copy
import sys
from pathlib import Path

import pytest
import requests

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meilisearch_index import EngineError  # noqa: E402


class FakeEngine:
    """Implements the MeilisearchEngine interface against dicts.

    ``fail_on`` maps a method name to the number of calls to let through before
    that method starts enqueuing failed tasks.
    """

    def __init__(self):
        self.indexes: dict[str, dict] = {}
        self.tasks: dict[int, tuple[str, dict | None]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.live_snapshots: list[tuple[str, dict | None]] = []
        self.watch_index: str | None = None
        self.fail_on: dict[str, int] = {}

    def _record(self, name: str, *args):
        self.calls.append((name, args))
        if self.watch_index is not None:
            live = self.indexes.get(self.watch_index)
            self.live_snapshots.append((name, copy.deepcopy(live["documents"]) if live else None))

    def _should_fail(self, name: str) -> bool:
        if name not in self.fail_on:
            return False
        if self.fail_on[name] > 0:
            self.fail_on[name] -= 1
            return False
        return True

    def _task(self, status: str = "succeeded", error: dict | None = None) -> int:
        uid = len(self.tasks)
        self.tasks[uid] = (status, error)
        return uid

    def seed(self, uid: str, documents: list[dict]):
        self.indexes[uid] = {
            "documents": {doc["objectID"]: doc for doc in documents},
            "settings": {},
            "primary_key": "objectID",
        }

    def documents(self, uid: str) -> dict:
        return self.indexes[uid]["documents"]

    def index_exists(self, uid):
        self._record("index_exists", uid)
        if self._should_fail("index_exists"):
            raise EngineError(f"get index {uid} failed: connection refused")
        return uid in self.indexes

    def create_index(self, uid, primary_key="objectID"):
        self._record("create_index", uid, primary_key)
        if self._should_fail("create_index") or uid in self.indexes:
            return self._task("failed", {"code": "index_already_exists"})
        self.indexes[uid] = {"documents": {}, "settings": {}, "primary_key": primary_key}
        return self._task()

    def delete_index(self, uid):
        self._record("delete_index", uid)
        if self._should_fail("delete_index") or uid not in self.indexes:
            return self._task("failed", {"code": "index_not_found"})
        del self.indexes[uid]
        return self._task()

    def update_settings(self, uid, settings):
        self._record("update_settings", uid, settings)
        if self._should_fail("update_settings") or uid not in self.indexes:
            return self._task("failed", {"code": "invalid_settings"})
        self.indexes[uid]["settings"].update(settings)
        return self._task()

    def add_documents(self, uid, documents):
        self._record("add_documents", uid, len(documents))
        if self._should_fail("add_documents") or uid not in self.indexes:
            return self._task("failed", {"code": "internal"})
        for doc in documents:
            self.indexes[uid]["documents"][doc["objectID"]] = doc
        return self._task()

    def swap_indexes(self, uid_a, uid_b):
        self._record("swap_indexes", uid_a, uid_b)
        if self._should_fail("swap_indexes") or uid_a not in self.indexes or uid_b not in self.indexes:
            return self._task("failed", {"code": "index_not_found"})
        self.indexes[uid_a], self.indexes[uid_b] = self.indexes[uid_b], self.indexes[uid_a]
        return self._task()

    def get_document_count(self, uid):
        return len(self.indexes[uid]["documents"])

    def wait_for_task(self, task_uid):
        status, error = self.tasks[task_uid]
        if status != "succeeded":
            raise EngineError(f"Task {task_uid} ended with status '{status}': {error}")
        return status


def make_response(url: str, text: str, status: int = 200, reason: str = "OK") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.url = url
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    return response


class FakeSite:
    """Serves canned pages to a patched requests.get and records each call."""

    def __init__(self, pages: dict[str, str | int | Exception]):
        self.pages = pages
        self.requests: list[tuple[str, dict]] = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        page = self.pages.get(url, 404)
        if isinstance(page, Exception):
            raise page
        if isinstance(page, int):
            return make_response(url, "", status=page, reason="Error")
        return make_response(url, page)


@pytest.fixture
def fake_engine():
    return FakeEngine()
