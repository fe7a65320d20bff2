"""Request-scoped merge pipeline.

One call to :meth:`MergePipeline.run` walks a request through
``idle -> workspace_ready -> fetching -> [transforming] -> assembling ->
publishing -> cleanup -> done``.  Any failure jumps straight to ``cleanup``;
cleanup runs exactly once and the workspace never outlives the call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from werkzeug.utils import secure_filename

from .engine.assembler import select_assembler
from .engine.transform import TransformOptions, prepare_segments
from .errors import MergeError, PurgeError
from .models.specs import MergeRequest, url_extension
from .settings import Settings
from .util_fs import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    WORKSPACE_READY = "workspace_ready"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    CLEANUP = "cleanup"
    DONE = "done"


_ORDER = list(Stage)

OUTPUT_DIR = "out"


@dataclass
class MergeJob:
    request: MergeRequest
    state: Stage = Stage.IDLE
    history: List[Stage] = field(default_factory=lambda: [Stage.IDLE])
    token: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[Exception] = None
    failed_in: Optional[Stage] = None
    purge_error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.state is Stage.DONE and self.error is None

    def advance(self, stage: Stage) -> None:
        if _ORDER.index(stage) <= _ORDER.index(self.state):
            raise RuntimeError(f"illegal transition {self.state.value} -> {stage.value}")
        self.state = stage
        self.history.append(stage)
        logger.info("[%s] %s", self.token or "-", stage.value)


def raw_name(index: int, url: str) -> str:
    return f"part{index}.{url_extension(url) or 'bin'}"


def output_filename(identifier: str, extension: str) -> str:
    return f"{secure_filename(identifier) or 'merged'}.{extension}"


class MergePipeline:
    def __init__(self, settings: Settings, fetcher, toolkit, publisher, workspaces: Optional[WorkspaceManager] = None):
        self.settings = settings
        self.fetcher = fetcher
        self.toolkit = toolkit
        self.publisher = publisher
        self.workspaces = workspaces or WorkspaceManager(settings.work_dir)

    def run(self, req: MergeRequest) -> MergeJob:
        job = MergeJob(req)
        ws: Optional[Workspace] = None
        try:
            ws = self.workspaces.create()
            job.token = ws.token
            job.advance(Stage.WORKSPACE_READY)

            job.advance(Stage.FETCHING)
            raw = self._fetch_all(req, ws)

            segments = raw
            if req.processing_enabled:
                job.advance(Stage.TRANSFORMING)
                opts = TransformOptions(
                    channels=req.channels,
                    fade_ms=req.fade_ms,
                    silence_ms=req.silence_ms,
                    workers=self.settings.transform_workers,
                )
                segments = prepare_segments(self.toolkit, raw, ws, opts)

            job.advance(Stage.ASSEMBLING)
            output = req.output_spec(self.settings.default_format)
            assembler = select_assembler(self.toolkit, req.processing_enabled, req.compression, req.files)
            # separate directory so a user-chosen name never lands on a segment
            out_dir = ws.path(OUTPUT_DIR)
            out_dir.mkdir()
            final = assembler.assemble(segments, output, ws, out_dir / output_filename(req.identifier, output.extension))

            job.advance(Stage.PUBLISHING)
            job.final_url = self.publisher.publish(final, req.identifier)
            self._purge(job, final)
        except MergeError as e:
            job.error = e
            job.failed_in = job.state
            logger.warning("[%s] failed in %s: %s", job.token or "-", job.state.value, e)
        except Exception as e:
            job.error = e
            job.failed_in = job.state
            logger.exception("[%s] unexpected failure in %s", job.token or "-", job.state.value)
        finally:
            job.advance(Stage.CLEANUP)
            if ws is not None:
                self.workspaces.destroy(ws)
            job.advance(Stage.DONE)
        return job

    def _fetch_all(self, req: MergeRequest, ws: Workspace) -> List[Path]:
        paths = []
        for i, url in enumerate(req.files):
            dest = ws.path(raw_name(i, url))
            self.fetcher.fetch(url, dest)
            paths.append(dest)
        return paths

    def _purge(self, job: MergeJob, final: Path) -> None:
        if not self.settings.purge_enabled:
            return
        try:
            keep = [self.publisher.key_for(final, job.request.identifier)]
            self.publisher.purge_by_prefix(self.settings.purge_prefix, keep=keep)
        except PurgeError as e:
            job.purge_error = e
            logger.warning("[%s] purge ignored: %s", job.token, e)
        except Exception as e:
            job.purge_error = PurgeError(self.settings.purge_prefix, e)
            logger.warning("[%s] purge ignored: %s", job.token, e, exc_info=True)
