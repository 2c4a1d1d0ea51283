"""Per-request workspace directories."""

import asyncio
import re
import shutil
import tempfile
import time
from pathlib import Path

from repodeploy.config import settings
from repodeploy.core.exceptions import CleanupWarning
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class Workspace:
    """A uniquely named directory owned by exactly one deployment run.

    Layout:
        <root>/<prefix>-<owner>-<repo>-<millis>-<random>/
            source.tar.gz   downloaded archive
            source/         extracted tree
    """

    def __init__(self, path: Path):
        self.path = path
        self.released = False

    @classmethod
    def create(cls, owner: str, repo: str, root: str | Path | None = None) -> "Workspace":
        """Create a fresh workspace directory."""
        base = Path(root or settings.workspace_root or tempfile.gettempdir())
        base.mkdir(parents=True, exist_ok=True)

        label = _UNSAFE_CHARS.sub("_", f"{owner}-{repo}")[:60]
        prefix = f"{settings.workspace_prefix}-{label}-{int(time.time() * 1000)}-"
        # mkdtemp adds a random suffix and fails rather than reuse a name
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=base))

        logger.info("workspace.created", path=str(path))
        return cls(path)

    @property
    def archive_path(self) -> Path:
        return self.path / "source.tar.gz"

    @property
    def source_dir(self) -> Path:
        return self.path / "source"

    async def release(self) -> CleanupWarning | None:
        """Remove the workspace. Never raises.

        Returns the CleanupWarning that was logged, if removal failed.
        """
        if self.released:
            return None
        try:
            await asyncio.to_thread(shutil.rmtree, self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            warning = CleanupWarning(
                f"Failed to cleanup workspace {self.path}: {e}",
                {"path": str(self.path)},
            )
            logger.warning(
                "workspace.cleanup_failed",
                code=warning.code,
                path=str(self.path),
                error=str(e),
            )
            return warning

        self.released = True
        logger.info("workspace.released", path=str(self.path))
        return None
