"""Exceptions raised while loading and exporting topic snapshots."""

from typing import Optional


class SnapshotError(Exception):
    """Base class for every snapshot failure."""

    def __init__(self, message: str, topic: Optional[str] = None, partition: Optional[int] = None):
        super().__init__(message)
        self.topic = topic
        self.partition = partition


class ConfigurationError(SnapshotError):
    """Topics configuration is missing or invalid."""

    def __init__(self, failures):
        self.failures = list(failures)
        super().__init__("Invalid configuration: " + "; ".join(self.failures))


class MetadataError(SnapshotError):
    """Topic or partition discovery failed."""


class WatermarkQueryError(SnapshotError):
    """Low/high offset query failed for a partition."""


class ReadError(SnapshotError):
    """Pulling or decoding a message failed."""


class CancelledError(SnapshotError):
    """Cancellation was requested while the snapshot was being loaded."""


class ExportError(SnapshotError):
    """Writing the snapshot file failed."""
