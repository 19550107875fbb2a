"""
Transcoding engine adapters.

An engine turns (input path, output path, encode parameters) into a running
encode. It reports through a per-job event channel: any number of
ProgressEvent items followed by exactly one terminal SuccessEvent or
FailureEvent. The orchestrator is the channel's only consumer.

FfmpegEngine runs ffmpeg as a child process:
- ffprobe supplies the source duration
- ``-progress pipe:1`` key=value blocks on stdout become progress events
- the stderr tail becomes the failure diagnostic
- terminate() sends SIGTERM, escalating to SIGKILL after a grace period
"""

import queue
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional, Union

from compressor.command_generator import generate_ffmpeg_command, generate_ffprobe_command
from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.enums.quality import EncodeParameters
from compressor.errors import EngineError

logger = setup_enhanced_logging(__name__)

# Seconds between SIGTERM and SIGKILL
TERMINATE_GRACE_SECONDS = 5.0

OUT_TIME_PATTERN = re.compile(r"^(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$")


@dataclass(frozen=True)
class ProgressEvent:
    percent: float


@dataclass(frozen=True)
class SuccessEvent:
    pass


@dataclass(frozen=True)
class FailureEvent:
    message: str


EngineEvent = Union[ProgressEvent, SuccessEvent, FailureEvent]


class EncodeHandle(ABC):
    """A running encode started by an engine."""

    @abstractmethod
    def terminate(self) -> None:
        """Stop the encode. A FailureEvent (or a racing SuccessEvent) still follows."""


class TranscodeEngine(ABC):
    @abstractmethod
    def start(
        self,
        input_path: str,
        output_path: str,
        params: EncodeParameters,
        channel: "queue.Queue[EngineEvent]",
    ) -> EncodeHandle:
        """
        Begin encoding and return immediately.

        Raises:
            EngineError: If the encode cannot be started
        """

    def is_available(self) -> bool:
        return True


class ProgressParser:
    """
    Turn ffmpeg ``-progress`` output into percentages.

    ffmpeg writes blocks of key=value lines, each block ending with
    ``progress=continue`` or ``progress=end``. One percentage is produced per
    block, using the latest ``out_time`` seen. Values are not clamped here:
    ffmpeg can report negative or past-the-end times.
    """

    def __init__(self, duration: Optional[float]):
        self.duration = duration
        self._out_time_us: Optional[int] = None
        self._out_time: Optional[float] = None

    def feed(self, line: str) -> Optional[float]:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None

        if key in ("out_time_us", "out_time_ms"):
            # out_time_ms is microseconds too (long-standing ffmpeg quirk)
            try:
                self._out_time_us = int(value)
            except ValueError:
                pass
        elif key == "out_time":
            self._out_time = parse_timestamp(value)
        elif key == "progress":
            if value == "end":
                return 100.0
            return self._percent()
        return None

    def _percent(self) -> Optional[float]:
        if not self.duration or self.duration <= 0:
            return None
        if self._out_time_us is not None:
            seconds = self._out_time_us / 1_000_000
        elif self._out_time is not None:
            seconds = self._out_time
        else:
            return None
        return seconds / self.duration * 100.0


def parse_timestamp(value: str) -> Optional[float]:
    """Parse ``HH:MM:SS.micro`` into seconds. Returns None for N/A or junk."""
    match = OUT_TIME_PATTERN.match(value.strip().lstrip("-"))
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return -total if value.strip().startswith("-") else total


class FfmpegEncode(EncodeHandle):
    """Reader threads for one ffmpeg process, feeding its event channel."""

    def __init__(self, process: subprocess.Popen, duration: Optional[float], channel, label: str = ""):
        self._process = process
        self._duration = duration
        self._channel = channel
        self._label = label
        self._stderr_tail = deque(maxlen=20)
        self._terminated = threading.Event()
        self._stderr_thread = threading.Thread(
            target=self._read_stderr, name=f"ffmpeg-stderr-{label}", daemon=True
        )
        self._stdout_thread = threading.Thread(
            target=self._read_stdout, name=f"ffmpeg-stdout-{label}", daemon=True
        )

    def start(self) -> None:
        self._stderr_thread.start()
        self._stdout_thread.start()

    @property
    def pid(self) -> int:
        return self._process.pid

    def _read_stderr(self) -> None:
        try:
            for line in self._process.stderr:
                line = line.rstrip()
                if line:
                    self._stderr_tail.append(line)
                    logger.debug(f"ffmpeg[{self._label}]: {line}")
        except (OSError, ValueError) as e:
            # An undrained stderr pipe would block ffmpeg forever
            log_with_context(
                logger, "error", f"[Engine] Lost ffmpeg stderr: {e}", label=self._label, exc_info=True
            )
            self._stderr_tail.append(f"Lost ffmpeg diagnostics: {e}")
            self._kill()

    def _read_stdout(self) -> None:
        parser = ProgressParser(self._duration)
        try:
            for line in self._process.stdout:
                percent = parser.feed(line)
                if percent is not None:
                    self._channel.put(ProgressEvent(percent))
            returncode = self._process.wait()
            self._stderr_thread.join()
        except Exception as e:
            log_with_context(
                logger, "error", f"[Engine] Lost ffmpeg output: {e}", label=self._label, exc_info=True
            )
            self._kill()
            self._channel.put(FailureEvent(f"Lost contact with ffmpeg: {e}"))
            return

        if returncode == 0 and not self._terminated.is_set():
            self._channel.put(SuccessEvent())
        else:
            self._channel.put(FailureEvent(self._diagnostic(returncode)))

    def _diagnostic(self, returncode: int) -> str:
        if self._terminated.is_set():
            return "ffmpeg was terminated"
        for line in reversed(self._stderr_tail):
            if line.strip():
                return line.strip()
        return f"ffmpeg exited with code {returncode}"

    def terminate(self) -> None:
        self._terminated.set()
        if self._process.poll() is not None:
            return
        log_with_context(logger, "info", "[Engine] Terminating ffmpeg", label=self._label, pid=self.pid)
        try:
            self._process.terminate()  # SIGTERM
        except ProcessLookupError:
            return
        timer = threading.Timer(TERMINATE_GRACE_SECONDS, self._kill)
        timer.daemon = True
        timer.start()

    def _kill(self) -> None:
        if self._process.poll() is None:
            logger.warning(f"[Engine] ffmpeg PID {self.pid} did not terminate, sending SIGKILL")
            try:
                self._process.kill()  # SIGKILL
            except ProcessLookupError:
                pass


class FfmpegEngine(TranscodeEngine):
    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", probe_timeout: float = 30.0):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.probe_timeout = probe_timeout

    def is_available(self) -> bool:
        """Check that ffmpeg can be executed."""
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return result.returncode == 0

    def probe_duration(self, input_path: str) -> Optional[float]:
        """Source duration in seconds, or None if ffprobe cannot tell."""
        try:
            result = subprocess.run(
                generate_ffprobe_command(input_path, self.ffprobe_path),
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.probe_timeout,
            )
            if result.returncode != 0:
                log_with_context(
                    logger, "warning", "[Engine] ffprobe failed",
                    input=input_path, stderr=result.stderr.strip()[-200:],
                )
                return None
            return float(result.stdout.strip().splitlines()[0])
        except (OSError, subprocess.SubprocessError, ValueError, IndexError) as e:
            log_with_context(
                logger, "warning", f"[Engine] Could not read duration: {e}", input=input_path
            )
            return None

    def start(self, input_path, output_path, params, channel) -> FfmpegEncode:
        duration = self.probe_duration(input_path)
        command = generate_ffmpeg_command(input_path, output_path, params, self.ffmpeg_path)

        log_with_context(
            logger, "info", f"[Engine] Running: {' '.join(command)}", duration=duration
        )

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                # Metadata echoed on stderr need not be valid UTF-8
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise EngineError(f"could not start ffmpeg: {e}")

        handle = FfmpegEncode(process, duration, channel, label=str(process.pid))
        handle.start()
        return handle
