"""Exception types raised by the baseline engine."""

from __future__ import annotations


class BaselineEngineError(Exception):
    """Base class for baseline engine errors."""


class StorageNotFoundError(BaselineEngineError, FileNotFoundError):
    """Raised by a storage backend when the requested object does not exist."""

    code = 404

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path


class BaselineUploadError(BaselineEngineError):
    """A baseline could not be written to storage."""


class BaselineNotFoundError(BaselineEngineError):
    """No baseline matched the requested id or context."""


class ImageDecodeError(BaselineEngineError):
    """Image bytes could not be decoded into pixels."""


_NOT_FOUND_MARKERS = ("No such object", "File not found", "does not exist", "not found")


def is_not_found_error(error: BaseException) -> bool:
    """Return True when an error means the stored object is simply absent."""
    if isinstance(error, FileNotFoundError):
        return True
    for attr in ("code", "status", "status_code"):
        if getattr(error, attr, None) in (404, "404", "NoSuchKey"):
            return True
    message = str(error)
    return any(marker in message for marker in _NOT_FOUND_MARKERS)
