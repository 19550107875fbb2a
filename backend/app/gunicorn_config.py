"""
Gunicorn configuration file for the video compressor backend.

Job state lives in the web process (unless JOB_STORE=redis) and encodes run on
that process's worker pool, so a single worker process serves all requests
with threads. Uploads can take minutes, hence the long timeout.
"""

import os

bind = f"0.0.0.0:{os.getenv('PORT', '3001')}"
workers = 1
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "8"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "3600"))
graceful_timeout = 30
accesslog = "-"


def worker_exit(server, worker):
    """
    Called just after a worker has exited.

    Stops the encode pool and scheduler so running ffmpeg processes are
    terminated and their jobs marked failed instead of left processing.
    """
    from wsgi import app

    app.compressor.shutdown()
    server.log.info("Compression services shut down")
