"""Test doubles and polling helpers shared by the test modules."""

import io
import threading
import time

from compressor.job_registry import InMemoryJobRegistry
from compressor.transcoder import (
    EncodeHandle,
    FailureEvent,
    ProgressEvent,
    SuccessEvent,
    TranscodeEngine,
)

ORIGINAL_BYTES = b"v" * 1000
COMPRESSED_BYTES = b"c" * 400

# Default script: a well-behaved encode that writes 400 bytes
DEFAULT_SCRIPT = [
    ("progress", 25),
    ("progress", 60),
    ("write", COMPRESSED_BYTES),
    ("progress", 100),
    ("succeed",),
]


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll ``predicate`` until it returns something truthy; return that value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    raise AssertionError(f"Condition not met within {timeout}s")


def store_upload(storage, data=ORIGINAL_BYTES, name="clip.mp4", max_bytes=10 ** 6):
    """Write an upload through a spool the way a request does; returns the kept spool."""
    spool = storage.open_upload(name, max_bytes)
    spool.write(data)
    spool.close()
    spool.keep()
    return spool


class FakeEncode(EncodeHandle):
    """
    Plays a script of steps into the event channel on its own thread.

    Steps:
        ("progress", value)   emit a ProgressEvent
        ("write", data)       write ``data`` to the output path
        ("block", event)      wait until ``event`` is set (or terminate())
        ("hang",)             wait until terminate()
        ("succeed",)          emit SuccessEvent and stop
        ("fail", message)     emit FailureEvent and stop
    """

    def __init__(self, steps, output_path, channel):
        self.steps = list(steps)
        self.output_path = output_path
        self.channel = channel
        self.terminated = threading.Event()
        self.finished = threading.Event()
        self._thread = threading.Thread(target=self._play, daemon=True)

    def start(self):
        self._thread.start()

    def terminate(self):
        self.terminated.set()

    def _wait(self, event=None):
        while not self.terminated.is_set():
            if event is not None and event.wait(0.01):
                return True
            if event is None:
                self.terminated.wait(0.01)
        return False

    def _play(self):
        try:
            for step in self.steps:
                if self.terminated.is_set():
                    break
                kind = step[0]
                if kind == "progress":
                    self.channel.put(ProgressEvent(step[1]))
                elif kind == "write":
                    with open(self.output_path, "wb") as f:
                        f.write(step[1])
                elif kind == "block":
                    self._wait(step[1])
                elif kind == "hang":
                    self._wait()
                elif kind == "succeed":
                    self.channel.put(SuccessEvent())
                    return
                elif kind == "fail":
                    self.channel.put(FailureEvent(step[1]))
                    return
            self.channel.put(FailureEvent("terminated"))
        finally:
            self.finished.set()


class FakeEngine(TranscodeEngine):
    """
    Scripted stand-in for ffmpeg.

    ``script`` is a list of steps, or a callable taking the input path and
    returning one, so different jobs can behave differently.
    """

    def __init__(self, script=None, start_error=None, available=True):
        self.script = script if script is not None else DEFAULT_SCRIPT
        self.start_error = start_error
        self.available = available
        self.availability_checks = 0
        self.calls = []
        self.handles = []
        self._lock = threading.Lock()

    def start(self, input_path, output_path, params, channel):
        if self.start_error is not None:
            raise self.start_error
        steps = self.script(input_path) if callable(self.script) else self.script
        handle = FakeEncode(steps, output_path, channel)
        with self._lock:
            self.calls.append((input_path, output_path, params))
            self.handles.append(handle)
        handle.start()
        return handle

    def is_available(self):
        self.availability_checks += 1
        return self.available

    @property
    def start_count(self):
        with self._lock:
            return len(self.calls)


class RecordingRegistry(InMemoryJobRegistry):
    """In-memory registry that remembers every stored state per job."""

    def __init__(self):
        super().__init__()
        self.history = {}
        self._history_lock = threading.Lock()

    def create(self, job):
        created = super().create(job)
        with self._history_lock:
            self.history[job.id] = [created]
        return created

    def update(self, job_id, mutator):
        result = super().update(job_id, mutator)
        if result is not None:
            with self._history_lock:
                states = self.history.setdefault(job_id, [])
                if not states or states[-1] is not result:
                    states.append(result)
        return result


def video_upload(name="clip.mp4", content=ORIGINAL_BYTES, mimetype="video/mp4", quality="balanced"):
    """Multipart form data for POST /compress."""
    data = {"video": (io.BytesIO(content), name, mimetype)}
    if quality is not None:
        data["quality"] = quality
    return data
