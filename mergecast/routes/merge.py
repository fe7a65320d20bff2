from typing import Any, Dict
from urllib.parse import urlparse

from flask import Blueprint, current_app, jsonify, request

from ..errors import MergeError, RequestError
from ..models.specs import SUPPORTED_FORMATS, MergeRequest, resolve_preset
from ..settings import BITRATE_RE, Settings

bp = Blueprint("merge", __name__)


def _bool(body: Dict[str, Any], key: str):
    value = body.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise RequestError(f"'{key}' must be true or false")


def _non_negative_int(body: Dict[str, Any], key: str):
    value = body.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise RequestError(f"'{key}' must be a non-negative integer")
    return value


def parse_merge_request(body: Any, settings: Settings) -> MergeRequest:
    """Validate a JSON body and fill gaps from ``settings``."""
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")

    files = body.get("files")
    if not isinstance(files, list) or not files:
        raise RequestError("'files' must be a non-empty list of URLs")
    for url in files:
        if not isinstance(url, str) or urlparse(url).scheme not in ("http", "https") or not urlparse(url).netloc:
            raise RequestError(f"Not an http(s) URL: {url!r}")

    output_name = body.get("outputName")
    if not isinstance(output_name, str) or not output_name.strip():
        raise RequestError("'outputName' is required")

    output_format = body.get("outputFormat")
    if output_format is not None:
        if not isinstance(output_format, str) or output_format.lower().lstrip(".") not in SUPPORTED_FORMATS:
            raise RequestError(f"'outputFormat' must be one of {', '.join(sorted(SUPPORTED_FORMATS))}")
        output_format = output_format.lower().lstrip(".")

    bitrate = body.get("bitrate", settings.default_bitrate)
    if not isinstance(bitrate, str) or not BITRATE_RE.match(bitrate):
        raise RequestError("'bitrate' must look like '192k'")

    channels = body.get("outputChannels", settings.channels)
    if isinstance(channels, bool) or not isinstance(channels, int) or channels not in (1, 2):
        raise RequestError("'outputChannels' must be 1 or 2")

    silence_ms = _non_negative_int(body, "silenceMs")
    silence_flag = _bool(body, "silence")
    if silence_ms is None:
        silence_ms = 0 if silence_flag is False else settings.silence_ms

    fade_ms = _non_negative_int(body, "fadeMs")
    if fade_ms is None:
        fade_ms = settings.fade_ms

    preset_name = body.get("preset")
    if preset_name is not None and not isinstance(preset_name, str):
        raise RequestError("'preset' must be a string")
    apply_compression = _bool(body, "applyCompression")
    if apply_compression is None:
        apply_compression = preset_name is not None or settings.apply_compression
    compression = resolve_preset(preset_name or settings.compression_preset) if apply_compression else None

    processing = _bool(body, "processingEnabled")
    if processing is None:
        processing = settings.processing_enabled

    return MergeRequest(
        files=list(files),
        output_name=output_name.strip(),
        output_format=output_format,
        bitrate=bitrate,
        silence_ms=silence_ms,
        fade_ms=fade_ms,
        compression=compression,
        channels=channels,
        processing_enabled=processing,
    )


def error_response(e: Exception):
    status = e.status_code if isinstance(e, MergeError) else 500
    return jsonify({"error": str(e) or e.__class__.__name__}), status


@bp.post("/merge-audio")
def merge_audio():
    settings = current_app.config["MERGE_SETTINGS"]
    try:
        req = parse_merge_request(request.get_json(silent=True), settings)
    except RequestError as e:
        return error_response(e)

    job = current_app.extensions["merge_pipeline"].run(req)
    if not job.ok:
        return error_response(job.error)
    return jsonify({"finalUrl": job.final_url}), 200
