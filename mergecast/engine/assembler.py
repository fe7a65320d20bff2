"""Final concatenation strategies.

``StreamCopyAssembler`` is the fast path for untouched inputs: a concat list
file and, when the container already matches, a plain stream copy.
``FilteredAssembler`` joins individually prepared segments with the concat
filter and can run a compressor over the joined signal.  Untouched inputs of
mixed formats also go through it, since the concat demuxer cannot mix codecs.
"""

from pathlib import Path
from typing import Optional, Sequence

from ..errors import AssembleError, ToolError
from ..models.specs import CompressorPreset, OutputSpec, url_extension
from ..util_fs import Workspace, write_concat_manifest

MANIFEST_NAME = "concat.txt"


def _fail(e: ToolError) -> AssembleError:
    return AssembleError(e.message, diagnostics=e.stderr)


class StreamCopyAssembler:
    def __init__(self, toolkit, source_format: str = ""):
        self.toolkit = toolkit
        self.source_format = source_format

    def assemble(self, segments: Sequence[Path], output: OutputSpec, ws: Workspace, dst: Path) -> Path:
        manifest = write_concat_manifest(ws.path(MANIFEST_NAME), segments)
        copy = self.source_format == output.extension
        try:
            return self.toolkit.concatenate(list(segments), dst, output, manifest=manifest, copy=copy)
        except ToolError as e:
            raise _fail(e)


class FilteredAssembler:
    def __init__(self, toolkit, compressor: Optional[CompressorPreset] = None):
        self.toolkit = toolkit
        self.compressor = compressor

    def assemble(self, segments: Sequence[Path], output: OutputSpec, ws: Workspace, dst: Path) -> Path:
        try:
            return self.toolkit.concatenate(list(segments), dst, output, compressor=self.compressor)
        except ToolError as e:
            raise _fail(e)


def shared_format(urls: Sequence[str]) -> Optional[str]:
    """The extension every URL has in common, or None when they differ."""
    formats = {url_extension(u) for u in urls}
    return formats.pop() if len(formats) == 1 else None


def select_assembler(toolkit, processing_enabled: bool, compressor: Optional[CompressorPreset], urls: Sequence[str]):
    if processing_enabled:
        return FilteredAssembler(toolkit, compressor)
    fmt = shared_format(urls)
    if fmt is None:
        # the concat demuxer needs identical codec parameters; the filter decodes each input
        return FilteredAssembler(toolkit, None)
    return StreamCopyAssembler(toolkit, fmt)
