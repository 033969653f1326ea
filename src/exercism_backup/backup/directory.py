"""Filesystem mutations applied by the backup engine.

``DirectorySynchronizer`` turns the engine's decisions into filesystem
changes.  Every operation runs in a worker thread while holding a permit
from the shared ``ConcurrencyLimiter``, and every ``OSError`` is re-raised as
a ``BackupError`` naming the path involved.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from collections.abc import Collection, Iterable
from pathlib import Path

from ..core.async_utils import ConcurrencyLimiter
from ..errors import BackupError

logger = logging.getLogger(__name__)


# =============================================================================
# Path helpers
# =============================================================================


def safe_join(base: Path, relative: str) -> Path:
    """Join a remote, ``/``-separated file path onto *base*.

    Raises:
        BackupError: If *relative* is empty, absolute, or climbs out of *base*.
    """
    parts = [
        part
        for part in relative.replace("\\", "/").split("/")
        if part not in ("", ".")
    ]
    if not parts or ".." in parts or relative.startswith(("/", "\\")):
        raise BackupError(f"refusing to write file outside of {base}: {relative!r}")
    return base.joinpath(*parts)


# =============================================================================
# Blocking primitives
# =============================================================================


def purge_directory(path: Path, reserved: Collection[str]) -> None:
    """Remove every entry directly under *path* except those named in *reserved*.

    *path* is then created again if needed, so it always exists afterwards.
    """
    for entry in path.iterdir():
        if entry.name in reserved:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    path.mkdir(parents=True, exist_ok=True)


def remove_empty_directory(path: Path) -> bool:
    """Remove *path* if it is an empty directory.

    Returns:
        ``True`` if the directory was removed, ``False`` if it was not empty
        or did not exist.

    Raises:
        OSError: For any other removal failure.
    """
    try:
        os.rmdir(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        if exc.errno in (errno.ENOTEMPTY, errno.EEXIST):
            return False
        raise
    return True


def write_chunks(path: Path, chunks: Iterable[bytes]) -> int:
    """Write *chunks* to *path*, replacing any existing file.

    Returns:
        Number of bytes written.
    """
    written = 0
    with open(path, "wb") as fh:
        for chunk in chunks:
            fh.write(chunk)
            written += len(chunk)
    return written


def write_text(path: Path, content: str) -> None:
    """Write *content* to *path* as UTF-8."""
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(content)


# =============================================================================
# Async, limited wrappers
# =============================================================================


class DirectorySynchronizer:
    """Apply directory-level decisions for solutions and their iterations.

    Args:
        limiter: Limiter shared by all remote and filesystem calls.
        reserved_names: Entries of a solution directory that survive a purge
            (the iterations directory and the internal state directory).
    """

    def __init__(
        self, limiter: ConcurrencyLimiter, reserved_names: Collection[str]
    ) -> None:
        self.limiter = limiter
        self.reserved_names = frozenset(reserved_names)

    async def exists(self, path: Path) -> bool:
        return await self.limiter.run(path.is_dir)

    async def create_directory(self, path: Path) -> None:
        """Create *path* and its parents; no-op if it already exists."""
        try:
            await self.limiter.run(path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"failed to create directory {path}") from exc

    async def purge_and_recreate(self, path: Path) -> None:
        """Remove a solution's content while keeping its reserved subdirectories."""
        logger.debug("Purging existing content in %s", path)
        try:
            await self.limiter.run(purge_directory, path, self.reserved_names)
        except OSError as exc:
            raise BackupError(
                f"failed to clean up existing directory {path}"
            ) from exc

    async def ensure_parent(self, file_path: Path) -> None:
        """Make sure the parent directory of *file_path* exists."""
        try:
            await self.limiter.run(
                file_path.parent.mkdir, parents=True, exist_ok=True
            )
        except OSError as exc:
            raise BackupError(
                f"failed to make sure parent of file {file_path} exists"
            ) from exc

    async def remove_tree(self, path: Path) -> None:
        """Remove *path* and everything below it."""
        try:
            await self.limiter.run(shutil.rmtree, path)
        except FileNotFoundError:
            logger.debug("Directory %s already removed", path)
        except OSError as exc:
            raise BackupError(f"failed to remove directory {path}") from exc

    async def remove_if_empty(self, path: Path) -> bool:
        """Best-effort removal of *path* when it holds nothing.

        A non-empty (or missing) directory is not an error.
        """
        try:
            removed = await self.limiter.run(remove_empty_directory, path)
        except OSError as exc:
            raise BackupError(
                f"failed to remove empty directory {path}"
            ) from exc
        if removed:
            logger.debug("Removed empty directory %s", path)
        return removed

    async def write_text(self, path: Path, content: str) -> None:
        """Write a text file, creating its parent directory first."""
        await self.ensure_parent(path)
        try:
            await self.limiter.run(write_text, path, content)
        except OSError as exc:
            raise BackupError(f"failed to write data to file {path}") from exc

    async def rename(self, source: Path, target: Path) -> None:
        """Move *source* to *target* (which must not exist yet)."""
        try:
            await self.limiter.run(source.rename, target)
        except OSError as exc:
            raise BackupError(
                f"failed to rename {source} to {target}"
            ) from exc
