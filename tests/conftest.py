import os
import shutil
import sys
from pathlib import Path

import numpy as np
import soundfile as sf
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from mergecast import create_app
from mergecast.errors import FetchError, PublishError, PurgeError, ToolError
from mergecast.settings import Settings


def write_tone(path, dur=1.0, sr=44100, freq=440.0, channels=1):
    t = np.linspace(0, dur, int(sr * dur), False)
    wave = 0.1 * np.sin(2 * np.pi * freq * t)
    if channels == 2:
        wave = np.column_stack((wave, wave))
    sf.write(path, wave, sr, subtype='PCM_16')
    return Path(path)


class FakeFetcher:
    """Copies local files in place of remote URLs."""

    def __init__(self, sources, failures=None):
        self.sources = sources
        self.failures = failures or {}
        self.calls = []

    def fetch(self, url, dest):
        self.calls.append((url, Path(dest)))
        if url in self.failures:
            raise FetchError(url, self.failures[url])
        shutil.copyfile(self.sources[url], dest)


class FakeToolkit:
    """In-process stand-in for ffmpeg that records every invocation."""

    def __init__(self, fail_on=None):
        # fail_on maps an operation name to the zero-based call that should fail
        self.fail_on = fail_on or {}
        self.calls = []
        self.counts = {}
        self.concat = None

    def _record(self, op, **kw):
        n = self.counts.get(op, 0)
        self.counts[op] = n + 1
        self.calls.append((op, kw))
        if self.fail_on.get(op) == n:
            raise ToolError(['ffmpeg', op], 1, f'{op} exploded')

    def normalize(self, src, dst, channels):
        self._record('normalize', src=Path(src), dst=Path(dst), channels=channels)
        data, _ = sf.read(src)
        if data.ndim == 1 and channels == 2:
            data = np.column_stack((data, data))
        elif data.ndim > 1 and channels == 1:
            data = data.mean(axis=1)
        sf.write(dst, data, 44100, subtype='PCM_16')
        return dst

    def probe_duration(self, path):
        self._record('probe_duration', path=Path(path))
        return sf.info(str(path)).duration

    def fade(self, src, dst, duration_s, fade_s):
        self._record('fade', src=Path(src), dst=Path(dst), duration_s=duration_s, fade_s=fade_s)
        shutil.copyfile(src, dst)
        return dst

    def synthesize_silence(self, dst, seconds, channels):
        self._record('synthesize_silence', dst=Path(dst), seconds=seconds, channels=channels)
        frames = int(round(seconds * 44100))
        shape = (frames, channels) if channels == 2 else frames
        sf.write(dst, np.zeros(shape), 44100, subtype='PCM_16')
        return dst

    def concatenate(self, segments, dst, output, *, manifest=None, copy=False, compressor=None):
        self._record('concatenate', segments=[Path(s) for s in segments], dst=Path(dst),
                     output=output, manifest=manifest, copy=copy, compressor=compressor)
        for seg in segments:
            assert Path(seg).exists(), seg
        self.concat = {
            'segments': [Path(s) for s in segments],
            'manifest': Path(manifest).read_text() if manifest else None,
            'copy': copy,
            'compressor': compressor,
            'output': output,
            'dst': Path(dst),
        }
        Path(dst).write_bytes(b'merged-audio')
        return dst

    def ops(self):
        return [op for op, _ in self.calls]


class FakePublisher:
    def __init__(self, fail=None, purge_fail=None):
        self.fail = fail
        self.purge_fail = purge_fail
        self.uploads = []
        self.purges = []

    def key_for(self, local_path, identifier):
        return f'merged/{identifier}{Path(local_path).suffix}'

    def publish(self, local_path, identifier):
        key = self.key_for(local_path, identifier)
        assert Path(local_path).exists()
        self.uploads.append((Path(local_path).name, identifier))
        if self.fail:
            raise PublishError(key, self.fail)
        return f'https://media.example.com/{key}'

    def purge_by_prefix(self, prefix, keep=()):
        self.purges.append((prefix, list(keep)))
        if self.purge_fail:
            raise PurgeError(prefix, self.purge_fail)
        return 0


@pytest.fixture
def settings(tmp_path):
    return Settings(work_dir=tmp_path / 'work', r2_bucket='media')


@pytest.fixture
def sources(tmp_path):
    src = tmp_path / 'src'
    src.mkdir()
    return {
        'https://cdn.example.com/a.wav': write_tone(src / 'a.wav', dur=1.0, freq=440),
        'https://cdn.example.com/b.wav': write_tone(src / 'b.wav', dur=0.5, freq=660),
        'https://cdn.example.com/c.wav': write_tone(src / 'c.wav', dur=0.1, freq=880),
    }


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def fetcher(sources):
    return FakeFetcher(sources)


@pytest.fixture
def client(settings, fetcher, toolkit, publisher):
    app = create_app(settings, fetcher=fetcher, toolkit=toolkit, publisher=publisher)
    app.config['TESTING'] = True
    return app.test_client()
