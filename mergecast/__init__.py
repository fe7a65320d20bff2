import logging

from flask import Flask, jsonify

from .pipeline import MergePipeline
from .services.fetch import RemoteFetcher
from .services.ffmpeg import FFmpegToolkit, tool_available
from .services.publisher import R2Publisher
from .settings import Settings


def create_app(settings: Settings | None = None, *, fetcher=None, toolkit=None, publisher=None):
    """Create and configure the Flask application.

    ``settings`` defaults to :meth:`Settings.from_env`.  The fetcher, audio
    toolkit and publisher may be swapped out, which is how the tests run the
    whole request path without network access or an ffmpeg install.
    """
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config["MERGE_SETTINGS"] = settings
    app.config["WORK_DIR"] = str(settings.work_dir)
    settings.work_dir.mkdir(parents=True, exist_ok=True)

    fetcher = fetcher or RemoteFetcher(
        timeout=settings.fetch_timeout,
        max_bytes=settings.max_download_mb * 1024 * 1024,
    )
    toolkit = toolkit or FFmpegToolkit(timeout=settings.ffmpeg_timeout)
    publisher = publisher or R2Publisher(settings)
    app.extensions["merge_pipeline"] = MergePipeline(settings, fetcher, toolkit, publisher)

    @app.get("/healthz")
    def healthz():
        return jsonify({
            "status": "ok",
            "ffmpeg": tool_available("ffmpeg"),
            "ffprobe": tool_available("ffprobe"),
            "publisher": settings.storage_configured,
        })

    from .routes.merge import bp as merge_bp
    app.register_blueprint(merge_bp)

    return app


__all__ = ["create_app"]
