"""Baseline entity model, queries, and comparison results."""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

INDEX_VERSION = "1.0"


def now_ms() -> int:
    return int(time.time() * 1000)


class RepositoryRef(BaseModel):
    owner: str
    name: str
    branch: str = "main"


class BaselineMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    commit: str
    author: str = ""
    pr_number: Optional[int] = Field(default=None, alias="prNumber")
    tags: Optional[list[str]] = None


class StorageRef(BaseModel):
    provider: Literal["local", "memory", "s3", "firebase"] = "local"
    path: str
    url: Optional[str] = None
    size: Optional[int] = None


class Dimensions(BaseModel):
    width: int
    height: int


class BaselineData(BaseModel):
    """Everything needed to create a baseline; id and storage are assigned on save."""
    model_config = ConfigDict(populate_by_name=True)

    repository: RepositoryRef
    route: str
    viewport: str  # e.g. "1920x1080"
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")
    metadata: BaselineMetadata
    fingerprint: str  # sha256 of the image bytes
    dimensions: Dimensions


class Baseline(BaselineData):
    id: str
    storage: StorageRef


class QueryRepository(BaseModel):
    owner: Optional[str] = None
    name: Optional[str] = None
    branch: Optional[str] = None


class BaselineQuery(BaseModel):
    repository: Optional[QueryRepository] = None
    route: Optional[str] = None
    viewport: Optional[str] = None
    commit: Optional[str] = None
    pr_number: Optional[int] = None
    tags: Optional[list[str]] = None
    limit: int = 10
    offset: int = 0


class BaselineIndex(BaseModel):
    """The single JSON document persisted for the whole repository."""
    model_config = ConfigDict(populate_by_name=True)

    version: str = INDEX_VERSION
    updated_at: str = Field(default="", alias="updatedAt")
    count: int = 0
    baselines: list[Baseline] = Field(default_factory=list)


class DiffRegion(BaseModel):
    x: int
    y: int
    width: int
    height: int
    type: Literal["added", "removed", "changed"] = "changed"
    confidence: float = 0.9


class DiffResult(BaseModel):
    has_differences: bool
    percentage: float  # 0-100, two decimals
    pixels_diff: int
    total_pixels: int
    width: int = 0
    height: int = 0
    diff_image: Optional[bytes] = None  # PNG bytes, only when differences exist
    regions: Optional[list[DiffRegion]] = None


class CaptureMetadata(BaseModel):
    commit: str = "unknown"
    timestamp: int = Field(default_factory=now_ms)


class CurrentScreenshot(BaseModel):
    screenshot: bytes
    metadata: CaptureMetadata = Field(default_factory=CaptureMetadata)


class BaselineComparison(BaseModel):
    baseline: Baseline
    current: CurrentScreenshot
    diff: DiffResult


class ScreenshotUpdate(BaseModel):
    route: str
    viewport: str
    buffer: bytes
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)


class BaselineUpdateRequest(BaseModel):
    pr_number: Optional[int] = None
    screenshots: list[ScreenshotUpdate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Keyed (route x viewport) lifecycle results
# ---------------------------------------------------------------------------


class ViewportSize(BaseModel):
    width: int
    height: int

    @property
    def key(self) -> str:
        return f"{self.width}x{self.height}"


class CapturedBaseline(BaseModel):
    route: str
    viewport: ViewportSize
    screenshot: bytes
    timestamp: int = Field(default_factory=now_ms)
    key: str = ""


class ComparisonState(str, Enum):
    BOOTSTRAPPED = "bootstrapped"
    COMPARED = "compared"
    DIMENSION_MISMATCH = "dimension_mismatch"
    UNREADABLE = "unreadable"


class ComparisonOutcome(BaseModel):
    has_difference: bool
    diff_percentage: float
    diff_image: Optional[bytes] = None
    regions: Optional[list[DiffRegion]] = None
    state: ComparisonState = ComparisonState.COMPARED


class FetchStatus(str, Enum):
    FOUND = "found"
    ABSENT = "absent"
    ERROR = "error"


class FetchOutcome(BaseModel):
    status: FetchStatus
    data: Optional[bytes] = None
    error: Optional[str] = None
