# src/build/sources.py - v1
"""Source providers: produce a zipped snapshot of a repository at a commit."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from stagegate.config.settings import Settings
from stagegate.core.errors import SourceFetchFailed
from stagegate.storage.bundles import zip_directory

logger = logging.getLogger(__name__)


class BaseSourceProvider(ABC):
    """Interface for fetching source snapshots."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'git', 'directory')."""

    @abstractmethod
    async def fetch(self, repository: str, commit_ref: str) -> bytes:
        """Return the snapshot of ``repository`` at ``commit_ref`` as zip bytes.

        Raises:
            SourceFetchFailed: If the snapshot cannot be produced.
        """


def _repo_path(root: Path, repository: str) -> Path:
    root = root.expanduser().resolve()
    path = (root / repository).resolve()
    if root not in path.parents:
        raise SourceFetchFailed(f"Repository path escapes source root: {repository!r}")
    if not path.is_dir():
        raise SourceFetchFailed(f"Repository not found: {repository!r} under {root}")
    return path


class DirectorySourceProvider(BaseSourceProvider):
    """Zips the working tree at ``<root>/<repository>``; the commit is only recorded."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def name(self) -> str:
        return "directory"

    async def fetch(self, repository: str, commit_ref: str) -> bytes:
        path = _repo_path(self._root, repository)
        payload = zip_directory(path)
        logger.info("Snapshot of %s (%s): %d bytes", repository, commit_ref, len(payload))
        return payload


class GitSourceProvider(BaseSourceProvider):
    """Runs ``git archive --format=zip <commit>`` in ``<root>/<repository>``."""

    def __init__(self, root: Path | str, git: str = "git", timeout_s: float = 300) -> None:
        self._root = Path(root)
        self._git = git
        self._timeout_s = timeout_s

    @property
    def name(self) -> str:
        return "git"

    async def fetch(self, repository: str, commit_ref: str) -> bytes:
        path = _repo_path(self._root, repository)
        if commit_ref.startswith("-"):
            raise SourceFetchFailed(f"Invalid commit reference: {commit_ref!r}")

        proc = await asyncio.create_subprocess_exec(
            self._git, "-C", str(path), "archive", "--format=zip", commit_ref,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SourceFetchFailed(
                f"git archive timed out for {repository}@{commit_ref}"
            ) from None

        if proc.returncode != 0:
            raise SourceFetchFailed(
                f"git archive failed for {repository}@{commit_ref}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )
        logger.info("Snapshot of %s@%s: %d bytes", repository, commit_ref, len(stdout))
        return stdout


def create_source_provider(settings: Settings) -> BaseSourceProvider:
    """Create the provider selected by SOURCE_PROVIDER.

    Raises:
        ValueError: If the provider is not supported.
    """
    if settings.source_provider == "git":
        return GitSourceProvider(settings.source_root)
    if settings.source_provider == "directory":
        return DirectorySourceProvider(settings.source_root)
    raise ValueError(f"Unsupported source provider: {settings.source_provider!r}")
