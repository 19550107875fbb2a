from typing import List

from compressor.enums.quality import EncodeParameters
from compressor.models import get_file_extension

# Containers that understand -movflags (ISO BMFF family)
FASTSTART_CONTAINERS = {".mp4", ".mov", ".3gp"}

# WebM only carries VP8/VP9/AV1 video and Vorbis/Opus audio
WEBM_CONTAINERS = {".webm"}

# libvpx has no x264-style presets; map them onto -cpu-used speed levels
VP9_CPU_USED = {"slow": 1, "medium": 2, "fast": 4}


def generate_ffmpeg_command(
    input_path: str,
    output_path: str,
    params: EncodeParameters,
    ffmpeg_path: str = "ffmpeg",
) -> List[str]:
    """
    Generate the ffmpeg command for one compression.

    Progress is written as key=value blocks to stdout (``-progress pipe:1``);
    stderr carries diagnostics only.

    Args:
        input_path: Uploaded source video
        output_path: Destination; its extension selects the container
        params: Quality tier parameters (bitrates, preset, crf)
        ffmpeg_path: ffmpeg executable

    Returns:
        List of command arguments
    """
    ext = get_file_extension(output_path)

    command = [ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-i", input_path]

    if ext in WEBM_CONTAINERS:
        command += [
            "-c:v", "libvpx-vp9",
            "-b:v", params.video_bitrate,
            "-crf", str(params.crf),
            "-deadline", "good",
            "-cpu-used", str(VP9_CPU_USED.get(params.preset, 2)),
            "-c:a", "libopus",
            "-b:a", params.audio_bitrate,
        ]
    else:
        command += [
            "-c:v", "libx264",
            "-b:v", params.video_bitrate,
            "-preset", params.preset,
            "-crf", str(params.crf),
            "-c:a", "aac",
            "-b:a", params.audio_bitrate,
        ]

    if ext in FASTSTART_CONTAINERS:
        # Optimize for web streaming
        command += ["-movflags", "+faststart"]

    command += ["-progress", "pipe:1", "-nostats", output_path]
    return command


def generate_ffprobe_command(input_path: str, ffprobe_path: str = "ffprobe") -> List[str]:
    """Command printing the container duration in seconds on stdout."""
    return [
        ffprobe_path,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        input_path,
    ]
