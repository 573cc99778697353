"""Versioned baselines per repository, branch and commit."""

from __future__ import annotations

import io
import logging
from collections import defaultdict
from typing import Optional, Sequence

from PIL import Image

from baseline_engine.baseline.differ import VisualDiffer
from baseline_engine.baseline.repository import BaselineRepository, compute_fingerprint
from baseline_engine.baseline.strategies import create_strategy
from baseline_engine.errors import BaselineNotFoundError
from baseline_engine.models.baseline import (
    Baseline,
    BaselineComparison,
    BaselineData,
    BaselineMetadata,
    BaselineQuery,
    BaselineUpdateRequest,
    CaptureMetadata,
    Dimensions,
    QueryRepository,
    RepositoryRef,
    now_ms,
)
from baseline_engine.models.config import EngineConfig

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
CANDIDATE_LIMIT = 50


def image_dimensions(content: bytes) -> Dimensions:
    with Image.open(io.BytesIO(content)) as img:
        width, height = img.size
    return Dimensions(width=width, height=height)


class BaselineManager:
    """Stores, selects, tags, and prunes versioned baselines."""

    def __init__(
        self,
        repository: BaselineRepository,
        config: Optional[EngineConfig] = None,
        differ: Optional[VisualDiffer] = None,
    ):
        self.repository = repository
        self.config = config or EngineConfig()
        self.differ = differ or VisualDiffer(self.config.diff, image_loader=repository.get_image)
        if self.differ.image_loader is None:
            self.differ.image_loader = repository.get_image

    def update_baselines(
        self,
        request: BaselineUpdateRequest,
        repository: RepositoryRef,
        commit: str,
        author: str = "",
    ) -> list[Baseline]:
        """Store each screenshot of a request as a new baseline version."""
        logger.info("Updating %d baselines (PR #%s)", len(request.screenshots), request.pr_number)
        saved: list[Baseline] = []

        for shot in request.screenshots:
            try:
                fingerprint = compute_fingerprint(shot.buffer)
                dimensions = image_dimensions(shot.buffer)
                self.repository.save_image(shot.buffer, {
                    "route": shot.route,
                    "viewport": shot.viewport,
                    "prNumber": request.pr_number or "",
                    **shot.metadata,
                })
                timestamp = now_ms()
                baseline = self.repository.save(BaselineData(
                    repository=repository,
                    route=shot.route,
                    viewport=shot.viewport,
                    created_at=timestamp,
                    updated_at=timestamp,
                    metadata=BaselineMetadata(
                        commit=commit,
                        author=author,
                        pr_number=request.pr_number,
                        tags=list(dict.fromkeys(["pr-update", *shot.tags])),
                    ),
                    fingerprint=fingerprint,
                    dimensions=dimensions,
                ))
                saved.append(baseline)
                logger.info("Updated baseline for %s at %s", shot.route, shot.viewport)
            except Exception as e:
                logger.error("Failed to update baseline for %s: %s", shot.route, e)

        return saved

    def get_baseline(
        self,
        route: str,
        viewport: str,
        repository: RepositoryRef,
        strategy: Optional[str] = None,
        pr_number: Optional[int] = None,
        branch: Optional[str] = None,
        current_branch: Optional[str] = None,
    ) -> Baseline | None:
        """Select the baseline to compare against using a named strategy."""
        query = BaselineQuery(
            repository=QueryRepository(owner=repository.owner, name=repository.name),
            route=route,
            viewport=viewport,
            limit=CANDIDATE_LIMIT,
        )
        candidates = self.repository.find(query)
        if not candidates:
            logger.warning("No baseline found for %s at %s", route, viewport)
            return None

        strategy_name = strategy or self.config.strategy
        selector = create_strategy(
            strategy_name,
            pr_number=pr_number,
            base_branch=branch or self.config.base_branch,
            current_branch=current_branch or repository.branch,
        )
        query.repository.branch = current_branch or repository.branch
        selected = selector.select_baseline(query, candidates)
        if selected:
            logger.info("Selected baseline %s (%s strategy)", selected.id, selector.name)
        return selected

    def compare(
        self,
        current: bytes,
        baseline: Baseline,
        metadata: CaptureMetadata | dict | None = None,
    ) -> BaselineComparison:
        return self.differ.compare(baseline, current, metadata)

    def tag_baseline(self, baseline_id: str, tags: Sequence[str]) -> Baseline:
        baseline = self.repository.get(baseline_id)
        if baseline is None:
            raise BaselineNotFoundError(f"Baseline {baseline_id} not found")

        merged = list(dict.fromkeys([*(baseline.metadata.tags or []), *tags]))
        updated = baseline.model_copy(update={
            "metadata": baseline.metadata.model_copy(update={"tags": merged}),
            "updated_at": max(now_ms(), baseline.updated_at),
        })
        saved = self.repository.save(updated)
        logger.info("Tagged baseline %s with: %s", baseline_id, ", ".join(tags))
        return saved

    def promote_to_stable(
        self,
        route: str,
        viewport: str,
        repository: RepositoryRef,
        commit: Optional[str] = None,
    ) -> Baseline:
        """Tag the most recent matching baseline as stable."""
        candidates = self.repository.find(BaselineQuery(
            repository=QueryRepository(owner=repository.owner, name=repository.name, branch=repository.branch),
            route=route,
            viewport=viewport,
            commit=commit,
        ))
        if not candidates:
            raise BaselineNotFoundError(f"No baseline found for {route} at {viewport}")

        promoted = self.tag_baseline(candidates[0].id, ["stable"])
        logger.info("Promoted baseline %s to stable", promoted.id)
        return promoted

    def cleanup(
        self,
        repository: RepositoryRef,
        keep_days: int = 30,
        keep_count: int = 10,
        keep_tags: Sequence[str] = ("stable", "release"),
        now: Optional[int] = None,
    ) -> int:
        """Delete old baselines, keeping recent, newest-N, and tagged ones per route/viewport."""
        cutoff = (now if now is not None else now_ms()) - keep_days * DAY_MS
        baselines = [
            b for b in self.repository.all()
            if b.repository.owner == repository.owner and b.repository.name == repository.name
        ]

        grouped: dict[tuple[str, str], list[Baseline]] = defaultdict(list)
        for b in baselines:
            grouped[(b.route, b.viewport)].append(b)

        deleted = 0
        for group in grouped.values():
            group.sort(key=lambda b: b.updated_at, reverse=True)
            kept = 0
            for b in group:
                has_keep_tag = any(t in keep_tags for t in (b.metadata.tags or []))
                if kept < keep_count or b.updated_at > cutoff or has_keep_tag:
                    kept += 1
                    continue
                if self.repository.delete(b.id):
                    deleted += 1
                    logger.info("Deleted old baseline: %s", b.id)

        logger.info("Cleanup complete: deleted %d old baselines", deleted)
        return deleted
