"""Filesystem storage backend."""

from __future__ import annotations

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Optional

from baseline_engine.errors import StorageNotFoundError

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


class LocalFileStorage:
    """Stores each object as a file; metadata goes to a JSON sidecar."""

    provider_name = "local"

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Invalid storage path: {path}")
        return self.root.joinpath(*rel.parts)

    def upload_file(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        dest = self._resolve(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        sidecar = dest.with_name(dest.name + META_SUFFIX)
        with open(sidecar, "w") as f:
            json.dump({"contentType": content_type, "metadata": metadata or {}}, f, indent=2)
        logger.debug("Stored %d bytes at %s", len(content), dest)
        return path

    def download_file(self, path: str) -> bytes:
        src = self._resolve(path)
        if not src.is_file():
            raise StorageNotFoundError(path)
        return src.read_bytes()

    def read_metadata(self, path: str) -> dict:
        sidecar = self._resolve(path + META_SUFFIX)
        if not sidecar.is_file():
            raise StorageNotFoundError(path + META_SUFFIX)
        with open(sidecar) as f:
            return json.load(f)

    def list_files(self, prefix: str) -> list[str]:
        if not self.root.exists():
            return []
        files = []
        for p in self.root.rglob("*"):
            if not p.is_file() or p.name.endswith(META_SUFFIX):
                continue
            rel = p.relative_to(self.root).as_posix()
            if rel.startswith(prefix):
                files.append(rel)
        return sorted(files)

    def delete_file(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageNotFoundError(path)
        target.unlink()
        target.with_name(target.name + META_SUFFIX).unlink(missing_ok=True)
        logger.debug("Deleted %s", target)
