"""Archive Extractor.

Unpacks a repository snapshot into an isolated workspace directory, refusing
any entry that would land outside of it.
"""

import asyncio
import tarfile
from pathlib import Path, PurePosixPath

from repodeploy.core.exceptions import ExtractionError
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)


class ArchiveExtractor:
    """Extracts tar archives (optionally compressed) safely.

    Provider snapshots wrap the tree in a single top-level directory
    (``owner-repo-sha/``); it is stripped so the returned root is the
    repository root.
    """

    def __init__(self, strip_root: bool = True, remove_archive: bool = True):
        self.strip_root = strip_root
        self.remove_archive = remove_archive

    async def extract(self, archive: Path, destination: Path) -> Path:
        """Extract ``archive`` into ``destination`` without blocking the loop."""
        return await asyncio.to_thread(self.extract_sync, archive, destination)

    def extract_sync(self, archive: Path, destination: Path) -> Path:
        if destination.exists():
            if not destination.is_dir():
                raise ExtractionError(f"Destination is not a directory: {destination}")
            if any(destination.iterdir()):
                raise ExtractionError(
                    f"Refusing to extract into non-empty directory: {destination}"
                )
        destination.mkdir(parents=True, exist_ok=True)
        dest_root = destination.resolve()

        try:
            with tarfile.open(archive, mode="r:*") as tar:
                members = tar.getmembers()
                planned = self._plan(members, dest_root)
                tar.extractall(dest_root, members=planned, filter="data")
        except ExtractionError:
            raise
        except (tarfile.TarError, EOFError, KeyError, OSError) as e:
            raise ExtractionError(f"Failed to extract archive: {e}") from e

        if self.remove_archive:
            try:
                archive.unlink()
            except OSError as e:
                logger.warning("extractor.archive_not_removed", archive=str(archive), error=str(e))

        logger.info(
            "extractor.completed",
            destination=str(dest_root),
            entries=len(planned),
        )
        return dest_root

    def _plan(self, members: list[tarfile.TarInfo], dest_root: Path) -> list[tarfile.TarInfo]:
        """Validate every entry and compute its final name.

        The whole archive is rejected if any single entry is unsafe.
        """
        if not members:
            raise ExtractionError("Archive is empty")

        for member in members:
            self._check_name(member.name)

        prefix = self._common_root(members) if self.strip_root else None

        planned: list[tarfile.TarInfo] = []
        for member in members:
            parts = PurePosixPath(member.name).parts
            if prefix is not None:
                parts = parts[1:]
            if not parts:
                # The stripped root directory itself
                continue

            if not (member.isfile() or member.isdir() or member.issym() or member.islnk()):
                raise ExtractionError(f"Unsupported archive entry type: {member.name}")

            name = "/".join(parts)
            target = (dest_root / name).resolve()
            if not _is_within(target, dest_root):
                raise ExtractionError(f"Archive entry escapes destination: {member.name}")

            if member.issym():
                link = (target.parent / member.linkname).resolve()
                if PurePosixPath(member.linkname).is_absolute() or not _is_within(link, dest_root):
                    raise ExtractionError(
                        f"Archive link escapes destination: {member.name} -> {member.linkname}"
                    )
            elif member.islnk():
                link_parts = PurePosixPath(member.linkname).parts
                if prefix is not None and link_parts and link_parts[0] == prefix:
                    link_parts = link_parts[1:]
                self._check_name(member.linkname)
                link = (dest_root / "/".join(link_parts)).resolve()
                if not link_parts or not _is_within(link, dest_root):
                    raise ExtractionError(
                        f"Archive link escapes destination: {member.name} -> {member.linkname}"
                    )
                member = member.replace(linkname="/".join(link_parts), deep=False)

            planned.append(member.replace(name=name, deep=False))

        return planned

    @staticmethod
    def _check_name(name: str) -> None:
        path = PurePosixPath(name)
        if path.is_absolute() or name.startswith(("/", "\\")) or ".." in path.parts:
            raise ExtractionError(f"Unsafe path in archive: {name}")
        if len(name) > 1 and name[1] == ":":
            raise ExtractionError(f"Unsafe path in archive: {name}")

    @staticmethod
    def _common_root(members: list[tarfile.TarInfo]) -> str | None:
        """Return the single top-level directory shared by all entries, if any."""
        roots = {PurePosixPath(m.name).parts[0] for m in members if PurePosixPath(m.name).parts}
        if len(roots) != 1:
            return None
        root = roots.pop()
        # A lone file at the top is not a wrapper directory
        for m in members:
            if PurePosixPath(m.name).parts == (root,) and not m.isdir():
                return None
        if all(PurePosixPath(m.name).parts == (root,) for m in members):
            return None
        return root


def _is_within(path: Path, root: Path) -> bool:
    return path == root or path.is_relative_to(root)
