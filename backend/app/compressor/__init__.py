"""Asynchronous video compression service: upload, transcode, poll, download."""

__version__ = "1.0.0"
