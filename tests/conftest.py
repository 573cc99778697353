"""Pytest configuration and shared fixtures."""

import io
import random
from typing import Callable

import pytest
from PIL import Image, ImageDraw

from baseline_engine.baseline.differ import VisualDiffer
from baseline_engine.baseline.repository import BaselineRepository, compute_fingerprint
from baseline_engine.models.baseline import (
    Baseline,
    BaselineData,
    BaselineMetadata,
    Dimensions,
    RepositoryRef,
    StorageRef,
)
from baseline_engine.models.config import DiffConfig, EngineConfig, ViewportConfig
from baseline_engine.storage.memory import InMemoryStorage


# ============================================================================
# Image Fixtures
# ============================================================================


def _make_png(
    width: int = 200,
    height: int = 200,
    background: tuple = (255, 255, 255, 255),
    blocks: tuple = (),
) -> bytes:
    img = Image.new("RGBA", (width, height), background)
    draw = ImageDraw.Draw(img)
    for x, y, w, h, color in blocks:
        draw.rectangle([x, y, x + w - 1, y + h - 1], fill=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Factory producing PNG bytes: a background plus (x, y, w, h, rgba) blocks."""
    return _make_png


@pytest.fixture
def white_png() -> bytes:
    return _make_png(200, 200)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def desktop() -> ViewportConfig:
    return ViewportConfig(width=1920, height=1080, name="desktop")


@pytest.fixture
def mobile() -> ViewportConfig:
    return ViewportConfig(width=375, height=667, name="mobile")


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    """Config with a reference URL and a temp route manifest path."""
    return EngineConfig(
        reference_url="https://prod.example.com",
        storage_dir=str(tmp_path / "store"),
        route_manifest_path=str(tmp_path / "route-manifest.json"),
        settle_delay_ms=0,
    )


@pytest.fixture
def disabled_config(tmp_path) -> EngineConfig:
    """Config without a reference URL, so capture is disabled."""
    return EngineConfig(
        storage_dir=str(tmp_path / "store"),
        route_manifest_path=str(tmp_path / "route-manifest.json"),
    )


@pytest.fixture
def seeded_differ() -> VisualDiffer:
    return VisualDiffer(DiffConfig(), rng=random.Random(1234))


# ============================================================================
# Storage & Repository Fixtures
# ============================================================================


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def repository(storage: InMemoryStorage) -> BaselineRepository:
    repo = BaselineRepository(storage)
    repo.initialize()
    return repo


@pytest.fixture
def repo_ref() -> RepositoryRef:
    return RepositoryRef(owner="acme", name="webapp", branch="main")


@pytest.fixture
def baseline_data_factory(repo_ref: RepositoryRef, white_png: bytes) -> Callable[..., BaselineData]:
    """Factory for BaselineData with overridable context fields."""

    def _factory(
        route: str = "/dashboard",
        viewport: str = "1920x1080",
        branch: str = "main",
        commit: str = "abc123",
        updated_at: int = 1_000,
        tags: list[str] | None = None,
        pr_number: int | None = None,
        image: bytes = white_png,
    ) -> BaselineData:
        return BaselineData(
            repository=repo_ref.model_copy(update={"branch": branch}),
            route=route,
            viewport=viewport,
            created_at=updated_at,
            updated_at=updated_at,
            metadata=BaselineMetadata(commit=commit, author="dev", pr_number=pr_number, tags=tags),
            fingerprint=compute_fingerprint(image),
            dimensions=Dimensions(width=200, height=200),
        )

    return _factory


@pytest.fixture
def make_baseline() -> Callable[..., Baseline]:
    """Factory for standalone Baseline entities (no repository involved)."""

    def _factory(
        id: str,
        branch: str = "main",
        updated_at: int = 1_000,
        commit: str = "c0",
        tags: list[str] | None = None,
    ) -> Baseline:
        return Baseline(
            id=id,
            repository=RepositoryRef(owner="acme", name="webapp", branch=branch),
            route="/",
            viewport="1920x1080",
            created_at=updated_at,
            updated_at=updated_at,
            metadata=BaselineMetadata(commit=commit, tags=tags),
            storage=StorageRef(provider="memory", path=f"baselines/{id}/screenshot.png"),
            fingerprint="0" * 64,
            dimensions=Dimensions(width=1920, height=1080),
        )

    return _factory
