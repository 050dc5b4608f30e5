"""Per-request scratch directories.

Every render request gets its own directory under the workspace root. The
directory name combines the request id with a random suffix from
``tempfile.mkdtemp`` so overlapping requests never collide, and ``scoped``
guarantees removal on every exit path.
"""

import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable

from video_renderer.exceptions import WorkspaceError

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """Directory exclusively owned by one render request."""

    request_id: str
    path: Path
    detached: bool = False

    @property
    def assets_dir(self) -> Path:
        return self.path / "assets"

    @property
    def output_dir(self) -> Path:
        return self.path / "output"

    def output_file(self, name: str) -> Path:
        return self.output_dir / name


class WorkspaceManager:
    """Allocates and removes request workspaces."""

    def __init__(self, root: str | Path, prefix: str = "render-") -> None:
        self.root = Path(root)
        self.prefix = prefix

    def acquire(self, request_id: str) -> Workspace:
        """Create a fresh workspace for ``request_id``.

        Raises:
            WorkspaceError: If the root is not writable.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix=f"{self.prefix}{request_id}-", dir=self.root))
            (path / "assets").mkdir()
            (path / "output").mkdir()
        except OSError as e:
            logger.error(f"[WORKSPACE] Cannot create workspace under {self.root}: {e}")
            raise WorkspaceError(f"Cannot create workspace: {e.strerror or e}") from e

        logger.info(f"[WORKSPACE] Acquired {path.name}")
        return Workspace(request_id=request_id, path=path)

    def release(self, workspace: Workspace) -> None:
        """Remove the workspace directory. Safe to call more than once."""
        try:
            shutil.rmtree(workspace.path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"[WORKSPACE] Failed to remove {workspace.path}: {e}")
            return
        logger.info(f"[WORKSPACE] Released {workspace.path.name}")

    def detach(self, workspace: Workspace) -> Callable[[], None]:
        """Hand release responsibility to the caller.

        ``scoped`` will no longer remove the directory; the returned callable
        must be invoked once the caller is done with the files.
        """
        workspace.detached = True
        return lambda: self.release(workspace)

    @asynccontextmanager
    async def scoped(self, request_id: str) -> AsyncIterator[Workspace]:
        workspace = self.acquire(request_id)
        try:
            yield workspace
        finally:
            if not workspace.detached:
                self.release(workspace)
