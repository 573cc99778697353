"""Configuration models for the baseline engine."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ViewportConfig(BaseModel):
    width: int = 1920
    height: int = 1080
    name: str = "desktop"

    @property
    def key(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def parse(cls, value: str, name: str = "") -> "ViewportConfig":
        """Build a viewport from a "WIDTHxHEIGHT" string."""
        try:
            width, height = (int(part) for part in value.lower().split("x", 1))
        except ValueError:
            raise ValueError(f"Invalid viewport '{value}', expected WIDTHxHEIGHT") from None
        return cls(width=width, height=height, name=name or value)


class DiffConfig(BaseModel):
    # Pixel comparison
    threshold: float = 0.1
    detect_antialiasing: bool = True
    alpha: float = 0.1
    diff_color: tuple[int, int, int] = (255, 0, 255)
    aa_color: tuple[int, int, int] = (0, 255, 0)

    # Region extraction
    grid_step: int = 10
    min_region_size: int = 10
    merge_margin: int = 20
    confidence: float = 0.9

    # Region classification
    sample_count: int = 10
    empty_channel_cutoff: int = 250
    added_ratio: float = 0.7
    removed_ratio: float = 0.3

    @field_validator("threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("threshold must be between 0 and 1")
        return v

    @field_validator("grid_step")
    @classmethod
    def check_grid_step(cls, v: int) -> int:
        if v < 1:
            raise ValueError("grid_step must be positive")
        return v


class RepositoryConfig(BaseModel):
    owner: str = ""
    name: str = ""
    branch: str = "main"


def _default_viewports() -> list[ViewportConfig]:
    return [
        ViewportConfig(width=1920, height=1080, name="desktop"),
        ViewportConfig(width=768, height=1024, name="tablet"),
        ViewportConfig(width=375, height=667, name="mobile"),
    ]


class EngineConfig(BaseModel):
    # Reference deployment that baselines are captured from; empty disables capture
    reference_url: Optional[str] = None

    # Storage
    storage_dir: str = ".baselines"
    index_path: str = "baselines/index.json"
    route_manifest_path: str = ".baselines/route-manifest.json"

    # Capture
    viewports: list[ViewportConfig] = Field(default_factory=_default_viewports)
    navigation_timeout_ms: int = 30000
    settle_delay_ms: int = 1000
    headless: bool = True

    # Comparison
    noise_floor_percentage: float = 0.1
    diff: DiffConfig = Field(default_factory=DiffConfig)

    # Baseline selection
    strategy: str = "smart"
    base_branch: str = "main"
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)

    @field_validator("reference_url", mode="before")
    @classmethod
    def resolve_env_reference_url(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v or None

    @classmethod
    def load(cls, path: str | Path) -> "EngineConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
