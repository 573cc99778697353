"""In-process storage backend, handy for dry runs and tests."""

from __future__ import annotations

from typing import Optional

from baseline_engine.errors import StorageNotFoundError


class InMemoryStorage:
    provider_name = "memory"

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}

    def upload_file(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        self.files[path] = bytes(content)
        self.metadata[path] = {"contentType": content_type, "metadata": dict(metadata or {})}
        return path

    def download_file(self, path: str) -> bytes:
        if path not in self.files:
            raise StorageNotFoundError(path)
        return self.files[path]

    def list_files(self, prefix: str) -> list[str]:
        return sorted(p for p in self.files if p.startswith(prefix))

    def delete_file(self, path: str) -> None:
        if path not in self.files:
            raise StorageNotFoundError(path)
        del self.files[path]
        self.metadata.pop(path, None)
