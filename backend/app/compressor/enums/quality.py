from dataclasses import dataclass
from enum import Enum
from typing import Dict


@dataclass(frozen=True)
class EncodeParameters:
    """Fixed ffmpeg parameter tuple for one quality tier."""

    video_bitrate: str
    audio_bitrate: str
    preset: str
    crf: int


class QualityTier(Enum):
    """Quality tiers selectable at upload time."""

    HIGH_QUALITY = "high_quality"
    BALANCED = "balanced"
    SMALLEST_SIZE = "smallest_size"

    @property
    def parameters(self) -> EncodeParameters:
        return QUALITY_PARAMETERS[self]


DEFAULT_QUALITY = QualityTier.BALANCED

QUALITY_PARAMETERS: Dict[QualityTier, EncodeParameters] = {
    QualityTier.HIGH_QUALITY: EncodeParameters(
        video_bitrate="8000k", audio_bitrate="128k", preset="slow", crf=18
    ),
    QualityTier.BALANCED: EncodeParameters(
        video_bitrate="4000k", audio_bitrate="96k", preset="medium", crf=23
    ),
    QualityTier.SMALLEST_SIZE: EncodeParameters(
        video_bitrate="1500k", audio_bitrate="64k", preset="fast", crf=28
    ),
}
