import logging
from pathlib import Path
from typing import Optional

import requests

from ..errors import FetchError, FetchTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class RemoteFetcher:
    """Streams remote audio files straight to disk."""

    def __init__(
        self,
        timeout: float = 60,
        max_bytes: Optional[int] = None,
        session: Optional[requests.Session] = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or requests.Session()
        self.chunk_size = chunk_size

    def fetch(self, url: str, dest: Path) -> None:
        total = 0
        try:
            with self.session.get(url, stream=True, timeout=self.timeout, allow_redirects=True) as r:
                r.raise_for_status()
                with open(dest, "wb") as fh:
                    for chunk in r.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        total += len(chunk)
                        if self.max_bytes is not None and total > self.max_bytes:
                            raise FetchError(url, f"exceeds {self.max_bytes} bytes")
                        fh.write(chunk)
        except FetchError:
            self._discard(dest)
            raise
        except requests.Timeout as e:
            self._discard(dest)
            raise FetchTimeout(url, e)
        except (requests.RequestException, OSError) as e:
            self._discard(dest)
            raise FetchError(url, e)
        if total == 0:
            self._discard(dest)
            raise FetchError(url, "empty response body")
        logger.debug("fetched %s (%d bytes) -> %s", url, total, dest.name)

    @staticmethod
    def _discard(dest: Path) -> None:
        try:
            Path(dest).unlink(missing_ok=True)
        except OSError:
            pass
