"""Error kinds raised by the merge pipeline.

Every pipeline failure derives from :class:`MergeError` and carries the HTTP
status the route answers with.  ``PurgeError`` is the odd one out: it is
raised by the publisher but always caught and logged by the pipeline.
"""

from typing import Optional


class ConfigError(ValueError):
    """Invalid process configuration detected at startup."""


class MergeError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestError(MergeError):
    status_code = 400


class FetchError(MergeError):
    status_code = 502

    def __init__(self, url: str, cause: BaseException | str):
        super().__init__(f"Failed to fetch {url}: {cause}")
        self.url = url
        self.cause = cause


class FetchTimeout(FetchError, TimeoutError):
    status_code = 504


class ToolError(MergeError):
    """An external tool exited with a nonzero status."""

    def __init__(self, cmd: list, returncode: int, stderr: str = ""):
        tool = cmd[0] if cmd else "tool"
        tail = (stderr or "").strip()[-400:]
        super().__init__(f"{tool} exited with status {returncode}: {tail}")
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class ToolTimeout(MergeError, TimeoutError):
    status_code = 504

    def __init__(self, cmd: list, timeout: float):
        tool = cmd[0] if cmd else "tool"
        super().__init__(f"{tool} did not finish within {timeout:g}s")
        self.cmd = cmd
        self.timeout = timeout


class TransformError(MergeError):
    def __init__(self, index: int, step: str, cause: BaseException | str):
        super().__init__(f"Input #{index} failed during {step}: {cause}")
        self.index = index
        self.step = step


class ProbeError(MergeError):
    def __init__(self, index: Optional[int], cause: BaseException | str):
        where = f"input #{index}" if index is not None else "file"
        super().__init__(f"Could not measure duration of {where}: {cause}")
        self.index = index
        self.cause = cause


class AssembleError(MergeError):
    def __init__(self, cause: BaseException | str, diagnostics: str = ""):
        super().__init__(f"Concatenation failed: {cause}")
        self.diagnostics = diagnostics


class PublishError(MergeError):
    status_code = 502

    def __init__(self, key: str, cause: BaseException | str):
        super().__init__(f"Upload of {key} failed: {cause}")
        self.key = key


class PurgeError(MergeError):
    def __init__(self, prefix: str, cause: BaseException | str):
        super().__init__(f"Purge of {prefix!r} failed: {cause}")
        self.prefix = prefix


__all__ = [
    "ConfigError",
    "MergeError",
    "RequestError",
    "FetchError",
    "FetchTimeout",
    "ToolError",
    "ToolTimeout",
    "TransformError",
    "ProbeError",
    "AssembleError",
    "PublishError",
    "PurgeError",
]
