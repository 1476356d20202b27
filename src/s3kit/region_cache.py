"""Bucket -> region cache shared by the client's region resolution.

Backed by a plain dict: ``setdefault`` and ``pop`` are atomic per key under
the GIL, which gives first-writer-wins semantics without an explicit lock.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


class BucketRegionCache:
    """Map of bucket name to the region it lives in."""

    def __init__(self) -> None:
        self._regions: dict[str, str] = {}

    def get(self, bucket: str) -> str | None:
        """Return the cached region for bucket, or None."""
        return self._regions.get(bucket)

    def region(self, bucket: str) -> str:
        """Return the cached region for bucket, or us-east-1."""
        return self._regions.get(bucket) or DEFAULT_REGION

    def add(self, bucket: str, region: str) -> str:
        """Record bucket's region unless one is already present.

        Returns:
            The region stored for bucket after the call, which is the
            earlier entry if another writer got there first.
        """
        stored = self._regions.setdefault(bucket, region)
        if stored == region:
            logger.debug("Cached region %s for bucket %s", region, bucket)
        return stored

    def remove(self, bucket: str) -> None:
        if self._regions.pop(bucket, None) is not None:
            logger.debug("Evicted region for bucket %s", bucket)

    def exists(self, bucket: str) -> bool:
        return bucket in self._regions

    def clear(self) -> None:
        self._regions.clear()

    def __len__(self) -> int:
        return len(self._regions)
