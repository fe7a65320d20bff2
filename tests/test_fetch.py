import pytest
import requests

from mergecast.errors import FetchError, FetchTimeout
from mergecast.services.fetch import RemoteFetcher


class FakeResponse:
    def __init__(self, chunks=(), status=200, explode_after=None):
        self.chunks = list(chunks)
        self.status = status
        self.explode_after = explode_after

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f'{self.status} Client Error')

    def iter_content(self, chunk_size=1):
        for i, c in enumerate(self.chunks):
            if self.explode_after is not None and i == self.explode_after:
                raise requests.ConnectionError('connection reset by peer')
            yield c


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, **kw):
        self.calls.append((url, kw))
        if self.exc:
            raise self.exc
        return self.response


def test_streams_chunks_to_disk(tmp_path):
    session = FakeSession(FakeResponse([b'ID3', b'abc', b'', b'def']))
    dest = tmp_path / 'part0.mp3'
    RemoteFetcher(timeout=5, session=session).fetch('https://x/a.mp3', dest)
    assert dest.read_bytes() == b'ID3abcdef'
    url, kw = session.calls[0]
    assert kw['stream'] is True and kw['timeout'] == 5


def test_http_error_is_fetch_error(tmp_path):
    dest = tmp_path / 'part0.mp3'
    with pytest.raises(FetchError) as exc:
        RemoteFetcher(session=FakeSession(FakeResponse(status=404))).fetch('https://x/a.mp3', dest)
    assert exc.value.url == 'https://x/a.mp3'
    assert not dest.exists()


def test_mid_stream_failure_discards_partial_file(tmp_path):
    dest = tmp_path / 'part0.mp3'
    resp = FakeResponse([b'aaa', b'bbb'], explode_after=1)
    with pytest.raises(FetchError):
        RemoteFetcher(session=FakeSession(resp)).fetch('https://x/a.mp3', dest)
    assert not dest.exists()


def test_timeout_is_its_own_kind(tmp_path):
    session = FakeSession(exc=requests.ReadTimeout('read timed out'))
    with pytest.raises(FetchTimeout) as exc:
        RemoteFetcher(session=session).fetch('https://x/a.mp3', tmp_path / 'p')
    assert isinstance(exc.value, TimeoutError)
    assert exc.value.status_code == 504


def test_write_failure_is_fetch_error(tmp_path):
    dest = tmp_path / 'missing-dir' / 'part0.mp3'
    with pytest.raises(FetchError):
        RemoteFetcher(session=FakeSession(FakeResponse([b'abc']))).fetch('https://x/a.mp3', dest)


def test_size_cap_and_empty_body(tmp_path):
    big = FakeResponse([b'x' * 600, b'x' * 600])
    with pytest.raises(FetchError, match='exceeds'):
        RemoteFetcher(max_bytes=1000, session=FakeSession(big)).fetch('https://x/a', tmp_path / 'a')
    with pytest.raises(FetchError, match='empty'):
        RemoteFetcher(session=FakeSession(FakeResponse([]))).fetch('https://x/b', tmp_path / 'b')
    assert not (tmp_path / 'a').exists() and not (tmp_path / 'b').exists()
