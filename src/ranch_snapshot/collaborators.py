"""External collaborators consumed by the engine: Clock and Blob Store.

Usage:
    from ranch_snapshot.collaborators import SystemClock, LocalBlobStore

    clock = SystemClock()
    clock.today()

    blobs = LocalBlobStore("/var/lib/ranch/photos")
    await blobs.exists("ranch-1/animal-7/1700000000.jpg")
"""

from datetime import date, datetime, timezone
from pathlib import Path
from typing import Protocol


class Clock(Protocol):
    """Source of the current time (snapshot timestamps, date checks)."""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock pinned to one instant."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def today(self) -> date:
        return self._instant.date()


class BlobStore(Protocol):
    """Content store that owns photo bytes.

    The engine only asks whether a locator resolves; it never reads or
    writes content.
    """

    async def exists(self, locator: str) -> bool:
        ...


class LocalBlobStore:
    """Blob store backed by a directory; locators are relative paths.

    URL-style locators (``https://.../animal-photos/<path>``) are reduced
    to the path after the bucket name.
    """

    def __init__(self, root: str | Path, bucket: str = "animal-photos") -> None:
        self._root = Path(root)
        self._bucket = bucket

    def resolve(self, locator: str) -> Path:
        marker = f"/{self._bucket}/"
        if marker in locator:
            locator = locator.split(marker, 1)[1]
        return self._root / locator.lstrip("/")

    async def exists(self, locator: str) -> bool:
        path = self.resolve(locator)
        return path.is_file() and self._root.resolve() in path.resolve().parents
