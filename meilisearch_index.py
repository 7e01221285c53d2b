"""Meilisearch publishing - builds a shadow index and swaps it in for the live one."""

import logging
import time
from enum import Enum
from typing import Any

import meilisearch
from meilisearch.errors import MeilisearchApiError, MeilisearchError

from config import TEMP_SUFFIX, ScraperEnv

logger = logging.getLogger(__name__)

PRIMARY_KEY = "objectID"
DEFAULT_BATCH_SIZE = 100

# Index settings forwarded from custom_settings when present
SETTINGS_KEYS = (
    "searchableAttributes",
    "filterableAttributes",
    "displayedAttributes",
    "sortableAttributes",
    "rankingRules",
    "distinctAttribute",
    "separatorTokens",
    "nonSeparatorTokens",
    "dictionary",
    "typoTolerance",
)


class EngineError(Exception):
    """A search engine call failed or a task ended in a non-success status."""


class MeilisearchEngine:
    """Thin wrapper over the Meilisearch client used by the reindex workflow.

    Every mutating method returns the task uid; ``wait_for_task`` blocks until the
    engine reports a terminal status and raises EngineError unless it succeeded.
    """

    def __init__(self, client: meilisearch.Client, task_timeout_ms: int | None = None):
        self.client = client
        # Unbounded wait unless a timeout is configured
        self.task_timeout_ms = task_timeout_ms if task_timeout_ms else float("inf")

    @classmethod
    def from_env(cls, env: ScraperEnv) -> "MeilisearchEngine":
        client = meilisearch.Client(env.MEILISEARCH_HOST_URL, env.MEILISEARCH_API_KEY)
        return cls(client, task_timeout_ms=env.MEILISEARCH_TASK_TIMEOUT_MS)

    def _call(self, description: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except MeilisearchError as e:
            raise EngineError(f"{description} failed: {e}") from e

    def index_exists(self, uid: str) -> bool:
        try:
            self.client.get_index(uid)
            return True
        except MeilisearchApiError as e:
            if e.code == "index_not_found":
                return False
            raise EngineError(f"get index {uid} failed: {e}") from e
        except MeilisearchError as e:
            raise EngineError(f"get index {uid} failed: {e}") from e

    def create_index(self, uid: str, primary_key: str = PRIMARY_KEY) -> int:
        task = self._call(f"create index {uid}", self.client.create_index, uid, {"primaryKey": primary_key})
        return task.task_uid

    def delete_index(self, uid: str) -> int:
        task = self._call(f"delete index {uid}", self.client.delete_index, uid)
        return task.task_uid

    def update_settings(self, uid: str, settings: dict[str, Any]) -> int:
        task = self._call(f"update settings of {uid}", self.client.index(uid).update_settings, settings)
        return task.task_uid

    def add_documents(self, uid: str, documents: list[dict[str, Any]]) -> int:
        task = self._call(f"add documents to {uid}", self.client.index(uid).add_documents, documents, PRIMARY_KEY)
        return task.task_uid

    def swap_indexes(self, uid_a: str, uid_b: str) -> int:
        task = self._call(f"swap {uid_a} <-> {uid_b}", self.client.swap_indexes, [{"indexes": [uid_a, uid_b]}])
        return task.task_uid

    def get_document_count(self, uid: str) -> int:
        stats = self._call(f"get stats of {uid}", self.client.index(uid).get_stats)
        return stats.number_of_documents

    def wait_for_task(self, task_uid: int):
        task = self._call(
            f"wait for task {task_uid}",
            self.client.wait_for_task,
            task_uid,
            timeout_in_ms=self.task_timeout_ms,
        )
        if task.status != "succeeded":
            raise EngineError(f"Task {task_uid} ended with status '{task.status}': {task.error}")
        return task


class ReindexStep(Enum):
    START = "start"
    PURGE_STALE_SHADOW = "purge_stale_shadow"
    CREATE_SHADOW = "create_shadow"
    APPLY_SETTINGS = "apply_settings"
    UPLOAD_BATCHES = "upload_batches"
    ENSURE_LIVE_EXISTS = "ensure_live_exists"
    SWAP = "swap"
    PURGE_OLD_SHADOW = "purge_old_shadow"
    DONE = "done"


def filter_settings(settings: dict[str, Any] | None) -> dict[str, Any]:
    """Keep only the index settings the engine accepts, in camelCase."""
    if not settings:
        return {}
    unknown = sorted(set(settings) - set(SETTINGS_KEYS))
    if unknown:
        logger.warning(f"[REINDEX] Ignoring unknown custom_settings keys: {', '.join(unknown)}")
    return {key: settings[key] for key in SETTINGS_KEYS if key in settings}


class ReindexCoordinator:
    """Builds ``<index>_temp`` out of band and atomically swaps it with the live index.

    The live index is only ever touched by the swap; a failure before it leaves
    the live index as it was, and the next run purges the half-built shadow.
    """

    def __init__(
        self,
        engine: MeilisearchEngine,
        index_name: str,
        settings: dict[str, Any] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.engine = engine
        self.index_name = index_name
        self.temp_name = f"{index_name}{TEMP_SUFFIX}"
        self.settings = filter_settings(settings)
        self.batch_size = max(1, batch_size)
        self.step = ReindexStep.START

    def _enter(self, step: ReindexStep):
        self.step = step
        logger.debug(f"[REINDEX] {self.index_name}: {step.name}")

    def purge_stale_shadow(self):
        self._enter(ReindexStep.PURGE_STALE_SHADOW)
        if not self.engine.index_exists(self.temp_name):
            logger.debug(f"[REINDEX] No leftover shadow index {self.temp_name}")
            return
        logger.info(f"[REINDEX] Deleting leftover shadow index from a previous run: {self.temp_name}")
        self.engine.wait_for_task(self.engine.delete_index(self.temp_name))

    def create_shadow(self):
        self._enter(ReindexStep.CREATE_SHADOW)
        self.engine.wait_for_task(self.engine.create_index(self.temp_name, PRIMARY_KEY))
        logger.info(f"[REINDEX] Created index: {self.temp_name}")

    def apply_settings(self):
        self._enter(ReindexStep.APPLY_SETTINGS)
        if not self.settings:
            logger.info("[REINDEX] No custom settings to apply")
            return
        self.engine.wait_for_task(self.engine.update_settings(self.temp_name, self.settings))
        logger.info(f"[REINDEX] Applied settings to {self.temp_name}: {', '.join(self.settings)}")

    def upload_batches(self, documents: list[dict[str, Any]]):
        """Upload sequentially, waiting on each batch before sending the next."""
        self._enter(ReindexStep.UPLOAD_BATCHES)
        total = len(documents)
        for start in range(0, total, self.batch_size):
            batch = documents[start : start + self.batch_size]
            try:
                self.engine.wait_for_task(self.engine.add_documents(self.temp_name, batch))
            except EngineError as e:
                raise EngineError(f"Batch {start}-{start + len(batch)} of {total}: {e}") from e
            logger.info(f"[REINDEX] Indexed {min(start + self.batch_size, total)}/{total} documents")

    def ensure_live_exists(self):
        self._enter(ReindexStep.ENSURE_LIVE_EXISTS)
        if self.engine.index_exists(self.index_name):
            return
        logger.info(f"[REINDEX] Creating main index: {self.index_name}")
        self.engine.wait_for_task(self.engine.create_index(self.index_name, PRIMARY_KEY))

    def swap(self):
        self._enter(ReindexStep.SWAP)
        self.engine.wait_for_task(self.engine.swap_indexes(self.index_name, self.temp_name))
        logger.info(f"[REINDEX] Swapped indexes: {self.index_name} <-> {self.temp_name}")

    def purge_old_shadow(self):
        self._enter(ReindexStep.PURGE_OLD_SHADOW)
        try:
            self.engine.wait_for_task(self.engine.delete_index(self.temp_name))
            logger.info(f"[REINDEX] Deleted old index data: {self.temp_name}")
        except EngineError as e:
            logger.warning(f"[REINDEX] Could not delete {self.temp_name}, next run will purge it: {e}")

    def run(self, documents: list[Any]):
        """Run the full reindex workflow.

        Args:
            documents: SearchDocument objects or already-serialized dicts

        Raises:
            EngineError: if any step up to and including the swap fails
        """
        payload = [doc.to_dict() if hasattr(doc, "to_dict") else doc for doc in documents]
        start_time = time.time()

        logger.info(f"[REINDEX] Starting reindex for: {self.index_name}")
        logger.info(f"[REINDEX] Total documents: {len(payload)}")

        try:
            self.purge_stale_shadow()
            self.create_shadow()
            self.apply_settings()
            self.upload_batches(payload)
            self.ensure_live_exists()
            self.swap()
        except EngineError as e:
            logger.error(f"[REINDEX] Aborted during {self.step.name}, live index {self.index_name} untouched: {e}")
            raise

        self.purge_old_shadow()
        self._enter(ReindexStep.DONE)
        logger.info(f"[REINDEX] ✓ Reindex completed for {self.index_name} in {time.time() - start_time:.1f}s")


def reindex(
    engine: MeilisearchEngine,
    index_name: str,
    documents: list[Any],
    settings: dict[str, Any] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
):
    """Publish ``documents`` as the new contents of ``index_name``."""
    ReindexCoordinator(engine, index_name, settings=settings, batch_size=batch_size).run(documents)
