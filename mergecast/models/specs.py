from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional
from urllib.parse import urlparse


@dataclass(frozen=True)
class FormatSpec:
    name: str
    codec: str
    lossy: bool = True


SUPPORTED_FORMATS: Dict[str, FormatSpec] = {
    "mp3": FormatSpec("mp3", "libmp3lame"),
    "ogg": FormatSpec("ogg", "libvorbis"),
    "m4a": FormatSpec("m4a", "aac"),
    "wav": FormatSpec("wav", "pcm_s16le", lossy=False),
    "flac": FormatSpec("flac", "flac", lossy=False),
}

AUDIO_EXTENSIONS = {"mp3", "ogg", "oga", "m4a", "aac", "wav", "wave", "flac", "aif", "aiff", "opus", "webm"}


@dataclass(frozen=True)
class CompressorPreset:
    name: str
    threshold_db: float
    ratio: float
    attack_ms: float
    release_ms: float
    makeup_db: float


DEFAULT_PRESET = CompressorPreset("default", threshold_db=-18, ratio=3, attack_ms=20, release_ms=250, makeup_db=2)

PRESETS: Dict[str, CompressorPreset] = {
    "default": DEFAULT_PRESET,
    "light": CompressorPreset("light", threshold_db=-14, ratio=2, attack_ms=30, release_ms=300, makeup_db=1),
    "radio": CompressorPreset("radio", threshold_db=-20, ratio=4, attack_ms=10, release_ms=200, makeup_db=4),
    "crushed": CompressorPreset("crushed", threshold_db=-28, ratio=8, attack_ms=5, release_ms=100, makeup_db=6),
}


def resolve_preset(name: Optional[str]) -> CompressorPreset:
    """Exact case-insensitive lookup; anything unknown gets the default."""
    if not name:
        return DEFAULT_PRESET
    return PRESETS.get(name.strip().lower(), DEFAULT_PRESET)


def url_extension(url: str) -> str:
    """Lower-cased extension of the URL path, without the dot ('' if none)."""
    suffix = PurePosixPath(urlparse(url).path).suffix
    return suffix[1:].lower() if suffix else ""


def strip_extension(name: str) -> str:
    """Drop trailing audio extension markers: ``show.final.mp3`` -> ``show.final``."""
    stem = name.strip()
    while True:
        m = re.match(r"^(.+)\.([A-Za-z0-9]{2,5})$", stem)
        if not m or m.group(2).lower() not in AUDIO_EXTENSIONS:
            return stem
        stem = m.group(1)


@dataclass(frozen=True)
class OutputSpec:
    format: FormatSpec
    bitrate: str
    channels: int
    sample_rate: int = 44100

    @property
    def extension(self) -> str:
        return self.format.name

    def codec_args(self) -> List[str]:
        args = ["-c:a", self.format.codec]
        if self.format.lossy:
            args += ["-b:a", self.bitrate]
        args += ["-ac", str(self.channels)]
        return args


@dataclass
class MergeRequest:
    files: List[str]
    output_name: str
    output_format: Optional[str] = None
    bitrate: str = "192k"
    silence_ms: int = 0
    fade_ms: int = 0
    compression: Optional[CompressorPreset] = None
    channels: int = 2
    processing_enabled: bool = False

    @property
    def identifier(self) -> str:
        return strip_extension(self.output_name)

    def source_format(self) -> str:
        return url_extension(self.files[0]) if self.files else ""

    def resolve_format(self, default: str = "mp3") -> FormatSpec:
        """Explicit override, else the first input's format, else ``default``."""
        for candidate in (self.output_format, self.source_format()):
            if candidate and candidate.lower() in SUPPORTED_FORMATS:
                return SUPPORTED_FORMATS[candidate.lower()]
        return SUPPORTED_FORMATS[default]

    def output_spec(self, default_format: str = "mp3") -> OutputSpec:
        return OutputSpec(self.resolve_format(default_format), self.bitrate, self.channels)
