"""Scratch file management for per-request media artifacts.

Provides:
- Unique path allocation inside the configured temp directory
- Best-effort, idempotent deletion
- A per-request scope that releases everything it allocated on exit
"""

import itertools
import logging
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Literal

logger = logging.getLogger(__name__)

ArtifactState = Literal["created", "consumed", "deleted"]


@dataclass
class TempArtifact:
    """A scratch file owned by exactly one request."""

    path: Path
    owner: str
    state: ArtifactState = "created"


class TempStorage:
    """Allocates and releases scratch paths under a single directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def allocate(self, prefix: str, extension: str) -> Path:
        """Return a path unique within this process. The file is not created."""
        with self._lock:
            seq = next(self._counter)
        ext = extension.lstrip(".")
        name = f"{prefix}_{time.time_ns()}_{seq}"
        if ext:
            name = f"{name}.{ext}"
        return self.base_dir / name

    def release(self, path: str | Path) -> bool:
        """Delete the file if present. Never raises.

        Returns True if a file was removed.
        """
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete temp file {path}: {e}")
            return False

    @asynccontextmanager
    async def scope(self, owner: str) -> AsyncIterator["TempArtifacts"]:
        """Yield an artifact collection that is released on every exit path."""
        artifacts = TempArtifacts(self, owner)
        try:
            yield artifacts
        finally:
            artifacts.release_all()


class TempArtifacts:
    """Artifacts created while serving one request."""

    def __init__(self, storage: TempStorage, owner: str) -> None:
        self._storage = storage
        self.owner = owner
        self._items: list[TempArtifact] = []

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def paths(self) -> list[Path]:
        return [a.path for a in self._items]

    def allocate(self, prefix: str, extension: str) -> Path:
        path = self._storage.allocate(prefix, extension)
        self._items.append(TempArtifact(path=path, owner=self.owner))
        return path

    def mark_consumed(self, path: Path) -> None:
        for artifact in self._items:
            if artifact.path == path and artifact.state == "created":
                artifact.state = "consumed"

    def release_all(self) -> None:
        removed = 0
        for artifact in self._items:
            if artifact.state == "deleted":
                continue
            if self._storage.release(artifact.path):
                removed += 1
            artifact.state = "deleted"
        if self._items:
            logger.debug(f"[{self.owner}] released {removed}/{len(self._items)} temp files")
