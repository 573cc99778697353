"""Route manifest: the routes to baseline when asked for "all routes"."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RouteManifestData(BaseModel):
    routes: list[str] = Field(default_factory=list)
    generated_at: str = ""


class RouteManifest:
    """Reads a ``{"routes": [...]}`` JSON document from disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RouteManifestData | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
            return RouteManifestData(**data)
        except Exception as e:
            logger.warning("Failed to load route manifest %s: %s", self.path, e)
            return None

    def routes(self) -> list[str]:
        manifest = self.load()
        return manifest.routes if manifest else []

    def save(self, routes: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        generated_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        manifest = RouteManifestData(routes=routes, generated_at=generated_at)
        with open(self.path, "w") as f:
            json.dump(manifest.model_dump(), f, indent=2)
