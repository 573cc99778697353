"""Builds the storage, repository, manager and lifecycle objects from one config."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from baseline_engine.baseline.differ import VisualDiffer
from baseline_engine.baseline.lifecycle import BaselineLifecycleManager
from baseline_engine.baseline.manager import BaselineManager
from baseline_engine.baseline.repository import BaselineRepository
from baseline_engine.models.baseline import (
    Baseline,
    BaselineQuery,
    CapturedBaseline,
    ComparisonOutcome,
    QueryRepository,
    RepositoryRef,
)
from baseline_engine.models.config import EngineConfig, ViewportConfig
from baseline_engine.routes import RouteManifest
from baseline_engine.storage.base import StorageProvider
from baseline_engine.storage.local import LocalFileStorage

logger = logging.getLogger(__name__)


class BaselineEngine:
    """Entry point used by the CLI; each method runs one engine operation."""

    def __init__(self, config: EngineConfig, storage: Optional[StorageProvider] = None):
        self.config = config
        self.storage = storage or LocalFileStorage(Path(config.storage_dir))
        self.route_manifest = RouteManifest(config.route_manifest_path)

        self.repository = BaselineRepository(self.storage, index_path=config.index_path)
        self.repository.initialize()

        self.differ = VisualDiffer(config.diff, image_loader=self.repository.get_image)
        self.manager = BaselineManager(self.repository, config, differ=self.differ)
        self.lifecycle = BaselineLifecycleManager(
            config, self.storage, route_manifest=self.route_manifest, differ=self.differ,
        )

    def repository_ref(self) -> RepositoryRef:
        repo = self.config.repository
        return RepositoryRef(owner=repo.owner, name=repo.name, branch=repo.branch)

    def resolve_routes(self, routes: Sequence[str] = ()) -> list[str]:
        return list(routes) or self.route_manifest.routes() or ["/"]

    def ensure(self, routes: Sequence[str] = ()) -> None:
        asyncio.run(self.lifecycle.ensure_baselines(self.resolve_routes(routes), self.config.viewports))

    def capture(self, routes: Sequence[str] = (), missing_only: bool = False) -> list[CapturedBaseline]:
        resolved = self.resolve_routes(routes)
        if missing_only:
            return asyncio.run(self.lifecycle.create_missing_baselines(resolved, self.config.viewports))
        return asyncio.run(self.lifecycle.create_baselines(resolved, self.config.viewports))

    def compare_file(self, route: str, viewport: ViewportConfig, screenshot_path: str | Path) -> ComparisonOutcome:
        screenshot = Path(screenshot_path).read_bytes()
        return self.lifecycle.compare_with_baseline(route, viewport, screenshot)

    def list_baselines(
        self,
        route: Optional[str] = None,
        viewport: Optional[str] = None,
        tags: Optional[list[str]] = None,
        limit: int = 10,
    ) -> list[Baseline]:
        ref = self.repository_ref()
        return self.repository.find(BaselineQuery(
            repository=QueryRepository(owner=ref.owner or None, name=ref.name or None),
            route=route,
            viewport=viewport,
            tags=tags or None,
            limit=limit,
        ))

    def promote(self, route: str, viewport: str, commit: Optional[str] = None) -> Baseline:
        return self.manager.promote_to_stable(route, viewport, self.repository_ref(), commit=commit)

    def cleanup(self, keep_days: int = 30, keep_count: int = 10) -> int:
        return self.manager.cleanup(self.repository_ref(), keep_days=keep_days, keep_count=keep_count)
