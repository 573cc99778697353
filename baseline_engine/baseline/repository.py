"""Versioned baseline records plus a whole-document JSON index."""

from __future__ import annotations

import hashlib
import json
import logging
import time

from baseline_engine.models.baseline import (
    Baseline,
    BaselineData,
    BaselineIndex,
    BaselineQuery,
    StorageRef,
)
from baseline_engine.storage.base import StorageProvider

logger = logging.getLogger(__name__)

DEFAULT_INDEX_PATH = "baselines/index.json"


def compute_fingerprint(content: bytes) -> str:
    """SHA-256 hex digest of image bytes."""
    return hashlib.sha256(content).hexdigest()


def baseline_id(data: BaselineData) -> str:
    """Deterministic id for a (owner, repo, branch, route, viewport, commit) context."""
    parts = [
        data.repository.owner,
        data.repository.name,
        data.repository.branch,
        data.route,
        data.viewport,
        data.metadata.commit,
    ]
    return hashlib.sha256("-".join(parts).encode()).hexdigest()[:12]


def image_path(fingerprint: str) -> str:
    return f"baselines/{fingerprint}/screenshot.png"


class BaselineRepository:
    """Owns the in-memory baseline index and persists it on every mutation.

    The index is loaded once by :meth:`initialize`. There is no locking: two
    processes writing the same index document race and the last write wins.
    """

    def __init__(self, storage: StorageProvider, index_path: str = DEFAULT_INDEX_PATH):
        self.storage = storage
        self.index_path = index_path
        self._baselines: dict[str, Baseline] = {}

    def initialize(self) -> None:
        """Load the baseline index from storage, or start empty."""
        self._baselines = self._load_index()

    def _load_index(self) -> dict[str, Baseline]:
        try:
            raw = self.storage.download_file(self.index_path)
        except FileNotFoundError:
            logger.info("No existing baseline index at %s", self.index_path)
            return {}
        except Exception as e:
            logger.warning("Failed to read baseline index: %s. Starting empty.", e)
            return {}

        try:
            index = BaselineIndex.model_validate(json.loads(raw))
        except Exception as e:
            logger.warning("Failed to parse baseline index: %s. Starting empty.", e)
            return {}

        logger.info("Loaded %d baselines from storage", len(index.baselines))
        return {b.id: b for b in index.baselines}

    def _save_index(self) -> None:
        index = BaselineIndex(
            updated_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            count=len(self._baselines),
            baselines=list(self._baselines.values()),
        )
        payload = json.dumps(index.model_dump(mode="json", by_alias=True), indent=2)
        self.storage.upload_file(
            self.index_path,
            payload.encode(),
            content_type="application/json",
            metadata={"updatedAt": index.updated_at},
        )
        logger.debug("Saved baseline index (%d entries) to %s", index.count, self.index_path)

    def save(self, data: BaselineData) -> Baseline:
        """Insert or replace the baseline for this context and commit."""
        bid = baseline_id(data)
        fields = data.model_dump(include=set(BaselineData.model_fields))
        existing = self._baselines.get(bid)
        if existing is not None:
            fields["created_at"] = min(existing.created_at, data.created_at)
            fields["updated_at"] = max(existing.updated_at, data.updated_at)

        baseline = Baseline(
            id=bid,
            storage=StorageRef(
                provider=getattr(self.storage, "provider_name", "local"),
                path=image_path(data.fingerprint),
            ),
            **fields,
        )
        self._baselines[bid] = baseline
        self._save_index()
        return baseline

    def get(self, baseline_id: str) -> Baseline | None:
        return self._baselines.get(baseline_id)

    def all(self) -> list[Baseline]:
        return list(self._baselines.values())

    def count(self) -> int:
        return len(self._baselines)

    def find(self, query: BaselineQuery) -> list[Baseline]:
        """Filter by every field set on the query, newest first, then paginate."""
        results = list(self._baselines.values())

        if query.repository:
            repo = query.repository
            if repo.owner:
                results = [b for b in results if b.repository.owner == repo.owner]
            if repo.name:
                results = [b for b in results if b.repository.name == repo.name]
            if repo.branch:
                results = [b for b in results if b.repository.branch == repo.branch]

        if query.route:
            results = [b for b in results if b.route == query.route]
        if query.viewport:
            results = [b for b in results if b.viewport == query.viewport]
        if query.commit:
            results = [b for b in results if b.metadata.commit == query.commit]
        if query.pr_number is not None:
            results = [b for b in results if b.metadata.pr_number == query.pr_number]
        if query.tags:
            results = [
                b for b in results
                if b.metadata.tags and any(t in b.metadata.tags for t in query.tags)
            ]

        results.sort(key=lambda b: b.updated_at, reverse=True)
        return results[query.offset:query.offset + query.limit]

    def delete(self, baseline_id: str) -> bool:
        """Remove a baseline. Image deletion failures never block the index update."""
        baseline = self._baselines.get(baseline_id)
        if baseline is None:
            return False

        # Images are content-addressed; keep bytes another baseline still points at
        shared = any(
            b.storage.path == baseline.storage.path
            for b in self._baselines.values() if b.id != baseline_id
        )
        if not shared:
            try:
                self.storage.delete_file(baseline.storage.path)
            except Exception as e:
                logger.warning("Failed to delete baseline image %s: %s", baseline.storage.path, e)

        del self._baselines[baseline_id]
        self._save_index()
        return True

    def get_image(self, baseline: Baseline) -> bytes:
        return self.storage.download_file(baseline.storage.path)

    def save_image(self, content: bytes, metadata: dict | None = None) -> str:
        """Upload image bytes to their content-addressed path and return it."""
        fingerprint = compute_fingerprint(content)
        path = image_path(fingerprint)
        upload_meta = {k: str(v) for k, v in (metadata or {}).items()}
        upload_meta["fingerprint"] = fingerprint
        upload_meta["uploadedAt"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        self.storage.upload_file(path, content, content_type="image/png", metadata=upload_meta)
        return path
