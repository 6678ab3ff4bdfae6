"""Exceptions raised inside the snapshot pipeline."""


class SnapshotError(Exception):
    pass


class FetchError(SnapshotError):
    """An asset could not be fetched after all retries."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class UnsafePathError(SnapshotError):
    """A computed path resolved outside the static root."""
