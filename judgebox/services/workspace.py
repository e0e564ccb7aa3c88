from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from judgebox.core.errors import IOFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Workspace:
    root: Path
    source: Path


class WorkspaceManager:
    """Allocates one uniquely named directory per request under ``scratch_root``.

    Concurrent requests only ever create distinct children of the scratch
    root, so no locking is needed.
    """

    def __init__(self, scratch_root: Path) -> None:
        self.scratch_root = Path(scratch_root)

    def allocate(self, code: str, file_name: str) -> Workspace:
        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            root = self.scratch_root / uuid.uuid4().hex
            root.mkdir(exist_ok=False)
        except OSError as exc:
            raise IOFailure(f"Unable to create workspace under {self.scratch_root}: {exc}") from exc

        source = root / file_name
        try:
            source.write_text(code, encoding="utf-8")
        except OSError as exc:
            shutil.rmtree(root, ignore_errors=True)
            raise IOFailure(f"Unable to write source file {source}: {exc}") from exc

        logger.debug("Allocated workspace %s", root)
        return Workspace(root=root.resolve(), source=source.resolve())

    def cleanup(self, workspace: Workspace) -> bool:
        if not workspace.root.exists():
            return True
        try:
            shutil.rmtree(workspace.root)
        except OSError as exc:
            logger.warning("Failed to delete workspace %s: %s", workspace.root, exc)
            return False
        return True
