"""Storage backend contract used by the baseline engine."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class StorageProvider(Protocol):
    """Minimal object-storage interface.

    ``download_file`` raises :class:`~baseline_engine.errors.StorageNotFoundError`
    when the path does not exist. Everything else is backend specific.
    """

    provider_name: str

    def upload_file(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str: ...

    def download_file(self, path: str) -> bytes: ...

    def list_files(self, prefix: str) -> list[str]: ...

    def delete_file(self, path: str) -> None: ...
