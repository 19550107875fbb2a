from flask import jsonify, request, send_file
from werkzeug.exceptions import RequestEntityTooLarge

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.enums.job_status import JobStatus
from compressor.errors import (
    CompressorError,
    JobNotFoundError,
    MissingFileError,
    QueueFullError,
    UploadTooLargeError,
    ValidationError,
)

logger = setup_enhanced_logging(__name__)

RETRY_AFTER_SECONDS = 30


def error_response(error: CompressorError):
    response = jsonify({"error": error.message})
    response.status_code = error.status_code
    if isinstance(error, QueueFullError):
        response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return response


def register_routes(app, services):
    """Register all Flask routes."""
    registry = services.registry
    storage = services.storage
    orchestrator = services.orchestrator
    intake = services.intake

    @app.teardown_request
    def discard_unclaimed_uploads(_error=None):
        # Spools not handed to a job belong to rejected or abandoned uploads
        for spool in getattr(request, "upload_spools", ()):
            spool.discard()

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(_error):
        # Werkzeug stopped reading the body at MAX_CONTENT_LENGTH
        return error_response(UploadTooLargeError(app.config["MAX_UPLOAD_SIZE"]))

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint."""
        return (
            jsonify(
                {
                    "status": "healthy",
                    "service": "video-compressor",
                    "ffmpeg": services.ffmpeg_available,
                }
            ),
            200,
        )

    @app.route("/compress", methods=["POST"])
    def compress_video():
        """
        Accept an upload and queue it for compression.

        Expects multipart form data:
            - video: the video file
            - quality: high_quality | balanced | smallest_size (default balanced)
        """
        try:
            # Reject on the declared length before touching the body
            if request.content_length and request.content_length > app.config["MAX_CONTENT_LENGTH"]:
                raise UploadTooLargeError(app.config["MAX_UPLOAD_SIZE"])

            file = request.files.get("video")
            if file is None or not file.filename:
                raise MissingFileError()

            job = intake.accept(file.stream, file.filename, quality=request.form.get("quality"))

            return (
                jsonify(
                    {
                        "jobId": job.id,
                        "message": "Compression started",
                        "status": job.status.value,
                    }
                ),
                200,
            )

        except ValidationError as e:
            log_with_context(logger, "warning", f"Upload rejected: {e.message}")
            return error_response(e)
        except QueueFullError as e:
            return error_response(e)
        except RequestEntityTooLarge:
            return error_response(UploadTooLargeError(app.config["MAX_UPLOAD_SIZE"]))
        except IOError as e:
            logger.error(f"File operation error during upload: {e}")
            return jsonify({"error": "Failed to store uploaded file"}), 500
        except Exception as e:
            logger.exception(f"Unexpected error during upload: {e}")
            return jsonify({"error": "Upload failed"}), 500

    @app.route("/status/<job_id>", methods=["GET"])
    def get_job_status(job_id):
        """Get status of a compression job."""
        job = registry.snapshot(job_id)
        if job is None:
            return error_response(JobNotFoundError(job_id))
        return jsonify(job.to_status_dict()), 200

    @app.route("/download/<job_id>", methods=["GET"])
    def download_file(job_id):
        """Download the compressed file of a completed job."""
        job = registry.snapshot(job_id)
        if job is None or job.status != JobStatus.COMPLETED or not job.output_path:
            return error_response(JobNotFoundError(job_id, "File not available"))

        output_path = job.output_path
        # Lease first so the sweeper cannot delete the file mid-stream
        storage.acquire_lease(output_path)
        try:
            if not storage.exists(output_path):
                storage.release_lease(output_path)
                return error_response(JobNotFoundError(job_id, "File not found on disk"))

            response = send_file(
                output_path,
                as_attachment=True,
                download_name=job.download_name,
                mimetype="application/octet-stream",
                conditional=False,
            )
        except Exception:
            storage.release_lease(output_path)
            raise

        # Passthrough bodies skip Response.close, which releases the lease
        response.direct_passthrough = False
        response.call_on_close(lambda: storage.release_lease(output_path))
        log_with_context(logger, "info", "Download started", job_id=job_id)
        return response

    @app.route("/jobs/<job_id>/cancel", methods=["POST"])
    def cancel_job(job_id):
        """Cancel a pending or processing compression job."""
        try:
            job = orchestrator.cancel(job_id)
        except CompressorError as e:
            return error_response(e)

        return (
            jsonify(
                {
                    "jobId": job_id,
                    "status": job.status.value,
                    "message": "Job cancellation requested",
                }
            ),
            200,
        )

    @app.route("/api/queue/status", methods=["GET"])
    def get_queue_status():
        """Encode pool occupancy."""
        return jsonify(orchestrator.stats()), 200

    return app
