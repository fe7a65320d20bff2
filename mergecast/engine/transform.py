"""Per-input audio preparation.

Each downloaded clip is re-encoded to 44.1 kHz with the requested channel
count, measured, and given a fade envelope.  A silence clip is synthesized
after every input but the last when a gap is configured.  Inputs do not
depend on each other, so with more than one worker they are prepared
concurrently; the returned order always follows the input order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from ..errors import ProbeError, ToolError, TransformError
from ..util_fs import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformOptions:
    channels: int = 2
    fade_ms: int = 0
    silence_ms: int = 0
    workers: int = 1


def prepare_input(toolkit, index: int, raw: Path, ws: Workspace, opts: TransformOptions, last: bool) -> List[Path]:
    """Return the segments contributed by input ``index``: the clip, then maybe a gap."""
    normalized = ws.path(f"norm{index}.wav")
    try:
        toolkit.normalize(raw, normalized, opts.channels)
    except ToolError as e:
        raise TransformError(index, "normalize", e)

    clip = normalized
    if opts.fade_ms > 0:
        try:
            duration = toolkit.probe_duration(normalized)
        except ProbeError as e:
            raise ProbeError(index, e.cause)
        except ToolError as e:
            raise ProbeError(index, e)
        clip = ws.path(f"fade{index}.wav")
        try:
            toolkit.fade(normalized, clip, duration, opts.fade_ms / 1000.0)
        except ToolError as e:
            raise TransformError(index, "fade", e)

    segments = [clip]
    if opts.silence_ms > 0 and not last:
        gap = ws.path(f"silence{index}.wav")
        try:
            toolkit.synthesize_silence(gap, opts.silence_ms / 1000.0, opts.channels)
        except ToolError as e:
            raise TransformError(index, "silence", e)
        segments.append(gap)
    return segments


def prepare_segments(toolkit, raw_paths: Sequence[Path], ws: Workspace, opts: TransformOptions) -> List[Path]:
    n = len(raw_paths)

    def one(index: int) -> List[Path]:
        return prepare_input(toolkit, index, raw_paths[index], ws, opts, last=index == n - 1)

    if opts.workers > 1 and n > 1:
        with ThreadPoolExecutor(max_workers=min(opts.workers, n)) as pool:
            per_input = list(pool.map(one, range(n)))
    else:
        per_input = [one(i) for i in range(n)]

    segments = [seg for group in per_input for seg in group]
    logger.debug("prepared %d segments from %d inputs", len(segments), n)
    return segments
