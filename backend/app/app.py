"""
Flask application for the video compressor backend.

``create_app`` builds an isolated application: its own registry, storage,
encode pool, scheduler and sweeper. Production uses the instance from
wsgi.py; tests build one per test with overrides and a fake engine.
"""

import atexit
import logging

from flask import Flask
from flask_cors import CORS

from compressor.config import load_config
from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.routes import register_routes
from compressor.services import build_services
from compressor.upload_request import UploadRequest

logger = setup_enhanced_logging("compressor.app")


def create_app(config_overrides=None, engine=None, registry=None):
    """
    Create and wire the Flask app.

    Args:
        config_overrides: Mapping merged over the environment configuration
        engine: TranscodeEngine to use instead of ffmpeg
        registry: JobRegistry to use instead of the one JOB_STORE selects

    Returns:
        Flask app with ``app.compressor`` holding the wired services
    """
    app = Flask(__name__)
    app.request_class = UploadRequest

    config = load_config()
    overrides = dict(config_overrides or {})
    if "MAX_UPLOAD_SIZE" in overrides and "MAX_CONTENT_LENGTH" not in overrides:
        overrides["MAX_CONTENT_LENGTH"] = overrides["MAX_UPLOAD_SIZE"] + 1024 * 1024
    config.update(overrides)
    app.config.update(config)

    max_size_gb = app.config["MAX_UPLOAD_SIZE"] / (1024 ** 3)
    logger.info(f"Max upload size: {max_size_gb:g}GB")

    allowed_origins = app.config["ALLOWED_ORIGINS"]
    logger.info(f"CORS allowed origins: {allowed_origins}")
    CORS(
        app,
        resources={r"/*": {"origins": allowed_origins}},
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["Content-Type", "Content-Disposition"],
        max_age=3600,
    )

    services = build_services(app.config, engine=engine, registry=registry)
    app.compressor = services

    register_routes(app, services)

    if app.config["START_BACKGROUND_SERVICES"]:
        services.start()
        atexit.register(services.shutdown)

    services.ffmpeg_available = services.engine.is_available()
    if services.ffmpeg_available:
        logger.info("FFmpeg is available and ready for compression")
    else:
        log_with_context(
            logger, "error", "FFmpeg not found or not working; compression jobs will fail",
            ffmpeg=app.config["FFMPEG_PATH"],
        )

    return app


if __name__ == "__main__":
    # Development mode
    logging.basicConfig(level=logging.INFO)
    dev_app = create_app()
    dev_app.run(host="0.0.0.0", port=dev_app.config["PORT"], threaded=True)
