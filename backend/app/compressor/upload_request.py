"""
Request class that streams uploaded videos straight into storage.

Werkzeug asks the request for a writable stream for every file part of a
multipart body, passing the part's file name and content type before any of
its bytes are read. For POST /compress the stream is an UploadSpool opened by
the intake, so a part that is not an allowed video is refused before anything
reaches disk and an accepted one is written exactly once, to its final place.
"""

from flask import Request, current_app

UPLOAD_ENDPOINT = "compress_video"


class UploadRequest(Request):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Spools opened while parsing this request; closed at teardown
        self.upload_spools = []

    def _get_file_stream(self, total_content_length, content_type, filename=None, content_length=None):
        if self.endpoint != UPLOAD_ENDPOINT:
            return super()._get_file_stream(
                total_content_length, content_type, filename=filename, content_length=content_length
            )

        spool = current_app.compressor.intake.open_spool(filename, content_type, content_length)
        self.upload_spools.append(spool)
        return spool
