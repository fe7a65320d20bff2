import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    token: str
    root: Path

    def path(self, name: str) -> Path:
        return self.root / name


class WorkspaceManager:
    """Hands out one scratch directory per request under ``base``."""

    def __init__(self, base):
        self.base = Path(base)

    def create(self) -> Workspace:
        self.base.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        root = self.base / token
        # exist_ok=False: a collision must never hand out someone else's files
        root.mkdir()
        return Workspace(token, root)

    def destroy(self, ws: Workspace) -> None:
        """Remove ``ws`` and everything in it.  Never raises."""
        try:
            shutil.rmtree(ws.root)
        except FileNotFoundError:
            pass
        except Exception as e:
            logger.warning("could not remove workspace %s: %s", ws.root, e)


def _quote_concat_path(path: Path) -> str:
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_concat_manifest(path: Path, segments: Iterable[Path]) -> Path:
    """Write an ffmpeg concat-demuxer list naming ``segments`` in order."""
    with open(path, "w", encoding="utf-8") as fh:
        for seg in segments:
            fh.write(f"file {_quote_concat_path(Path(seg).resolve())}\n")
    return path
