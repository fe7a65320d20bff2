import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import ProbeError, ToolError, ToolTimeout
from ..models.specs import CompressorPreset, OutputSpec

SAMPLE_RATE = 44100
INTERMEDIATE_CODEC = "pcm_s16le"


def run(cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run ``cmd`` without a shell, raising on nonzero exit or timeout."""
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise ToolTimeout(cmd, timeout or 0)
    except FileNotFoundError as e:
        raise ToolError(cmd, 127, str(e))
    if proc.returncode != 0:
        raise ToolError(cmd, proc.returncode, proc.stderr)
    return proc


def tool_available(tool: str) -> bool:
    return shutil.which(tool) is not None


def fade_out_start(duration_s: float, fade_s: float) -> float:
    return max(0.0, duration_s - fade_s)


def fade_filter(duration_s: float, fade_s: float) -> str:
    start = fade_out_start(duration_s, fade_s)
    return f"afade=t=in:st=0:d={fade_s:.3f},afade=t=out:st={start:.3f}:d={fade_s:.3f}"


def compressor_filter(preset: CompressorPreset) -> str:
    # acompressor takes makeup as linear gain in [1, 64]
    makeup = min(64.0, max(1.0, 10 ** (preset.makeup_db / 20.0)))
    return (
        f"acompressor=threshold={preset.threshold_db:g}dB:ratio={preset.ratio:g}"
        f":attack={preset.attack_ms:g}:release={preset.release_ms:g}:makeup={makeup:.3f}"
    )


def concat_filter_graph(n: int, compressor: Optional[CompressorPreset] = None) -> str:
    labels = "".join(f"[{i}:a]" for i in range(n))
    if compressor is None:
        return f"{labels}concat=n={n}:v=0:a=1[out]"
    return f"{labels}concat=n={n}:v=0:a=1[cat];[cat]{compressor_filter(compressor)}[out]"


def channel_layout(channels: int) -> str:
    return "mono" if channels == 1 else "stereo"


def build_normalize_cmd(binary: str, src: Path, dst: Path, channels: int) -> List[str]:
    return [
        binary, "-nostdin", "-hide_banner", "-y",
        "-i", str(src),
        "-vn",
        "-ar", str(SAMPLE_RATE),
        "-ac", str(channels),
        "-c:a", INTERMEDIATE_CODEC,
        str(dst),
    ]


def build_fade_cmd(binary: str, src: Path, dst: Path, duration_s: float, fade_s: float) -> List[str]:
    return [
        binary, "-nostdin", "-hide_banner", "-y",
        "-i", str(src),
        "-af", fade_filter(duration_s, fade_s),
        "-c:a", INTERMEDIATE_CODEC,
        str(dst),
    ]


def build_silence_cmd(binary: str, dst: Path, seconds: float, channels: int) -> List[str]:
    return [
        binary, "-nostdin", "-hide_banner", "-y",
        "-f", "lavfi",
        "-i", f"anullsrc=r={SAMPLE_RATE}:cl={channel_layout(channels)}",
        "-t", f"{seconds:.3f}",
        "-c:a", INTERMEDIATE_CODEC,
        str(dst),
    ]


def build_copy_concat_cmd(binary: str, manifest: Path, dst: Path, output: OutputSpec, copy: bool) -> List[str]:
    cmd = [
        binary, "-nostdin", "-hide_banner", "-y",
        "-f", "concat", "-safe", "0",
        "-i", str(manifest),
        "-vn",
    ]
    cmd += ["-c", "copy"] if copy else output.codec_args()
    cmd.append(str(dst))
    return cmd


def build_filter_concat_cmd(
    binary: str,
    segments: Sequence[Path],
    dst: Path,
    output: OutputSpec,
    compressor: Optional[CompressorPreset] = None,
) -> List[str]:
    cmd = [binary, "-nostdin", "-hide_banner", "-y"]
    for seg in segments:
        cmd += ["-i", str(seg)]
    cmd += [
        "-filter_complex", concat_filter_graph(len(segments), compressor),
        "-map", "[out]",
        "-ar", str(output.sample_rate),
    ]
    cmd += output.codec_args()
    cmd.append(str(dst))
    return cmd


class FFmpegToolkit:
    """Audio capability backed by the ffmpeg and ffprobe binaries."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", timeout: Optional[float] = 600):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

    def normalize(self, src: Path, dst: Path, channels: int) -> Path:
        run(build_normalize_cmd(self.ffmpeg, src, dst, channels), timeout=self.timeout)
        return dst

    def probe_duration(self, path: Path) -> float:
        proc = run([
            self.ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ], timeout=self.timeout)
        try:
            return float(proc.stdout.strip())
        except ValueError:
            raise ProbeError(None, f"ffprobe returned {proc.stdout.strip()!r} for {path.name}")

    def fade(self, src: Path, dst: Path, duration_s: float, fade_s: float) -> Path:
        run(build_fade_cmd(self.ffmpeg, src, dst, duration_s, fade_s), timeout=self.timeout)
        return dst

    def synthesize_silence(self, dst: Path, seconds: float, channels: int) -> Path:
        run(build_silence_cmd(self.ffmpeg, dst, seconds, channels), timeout=self.timeout)
        return dst

    def concatenate(
        self,
        segments: Sequence[Path],
        dst: Path,
        output: OutputSpec,
        *,
        manifest: Optional[Path] = None,
        copy: bool = False,
        compressor: Optional[CompressorPreset] = None,
    ) -> Path:
        """Join ``segments`` into ``dst``.

        With ``manifest`` the concat demuxer reads the list file (stream copy
        when ``copy`` is set); otherwise a concat filter runs over every
        segment as a separate input, optionally followed by ``compressor``.
        """
        if manifest is not None:
            cmd = build_copy_concat_cmd(self.ffmpeg, manifest, dst, output, copy)
        else:
            cmd = build_filter_concat_cmd(self.ffmpeg, segments, dst, output, compressor)
        run(cmd, timeout=self.timeout)
        return dst
