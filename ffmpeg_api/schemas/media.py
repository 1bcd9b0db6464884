import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FORMAT_PATTERN = r"^[A-Za-z0-9]{2,5}$"
X264_PRESETS = Literal[
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
]


def parse_timestamp(value: float | int | str) -> float:
    """Convert seconds or ``[HH:]MM:SS[.ms]`` into seconds."""
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        parts = text.split(":")
        if not 1 <= len(parts) <= 3:
            raise ValueError(f"invalid timestamp: {value!r}")
        try:
            seconds = 0.0
            for part in parts:
                seconds = seconds * 60 + float(part)
        except ValueError:
            raise ValueError(f"invalid timestamp: {value!r}")
    if not math.isfinite(seconds):
        raise ValueError(f"invalid timestamp: {value!r}")
    if seconds < 0:
        raise ValueError("timestamps must not be negative")
    return seconds


class MediaRequest(BaseModel):
    """Base body for single-input operations."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    base64: str | None = Field(default=None, description="Inline media, optionally a data URI")
    filename: str | None = Field(default=None, max_length=200)


class ConvertAudioRequest(MediaRequest):
    format: str = Field(default="mp3", pattern=FORMAT_PATTERN)
    stream: bool = False


class ConvertVideoRequest(MediaRequest):
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)
    stream: bool = False


class MultiMediaRequest(BaseModel):
    """Base body for operations over several URLs."""

    model_config = ConfigDict(extra="ignore")

    urls: list[str] = Field(default_factory=list)
    filename: str | None = Field(default=None, max_length=200)


class MergeRequest(MultiMediaRequest):
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)


class MixAudioRequest(MultiMediaRequest):
    format: str = Field(default="mp3", pattern=FORMAT_PATTERN)


class ExtractAudioRequest(MediaRequest):
    pass


class EqualizeRequest(MediaRequest):
    pass


class SpeedAudioRequest(MediaRequest):
    speed: float = Field(ge=0.25, le=8.0)
    format: str = Field(default="mp3", pattern=FORMAT_PATTERN)


class CutRequest(MediaRequest):
    start: float | str
    end: float | str

    @field_validator("start", "end")
    @classmethod
    def _to_seconds(cls, v: float | str) -> float:
        return parse_timestamp(v)

    @model_validator(mode="after")
    def _check_range(self) -> "CutRequest":
        if self.end <= self.start:
            raise ValueError("'end' must be greater than 'start'")
        return self


class CutAudioRequest(CutRequest):
    format: str = Field(default="mp3", pattern=FORMAT_PATTERN)


class CutVideoRequest(CutRequest):
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)


class FadeRequest(MediaRequest):
    type: Literal["in", "out"]
    duration: float = Field(default=3.0, gt=0, le=600)
    start: float | str | None = None
    format: str = Field(default="mp3", pattern=FORMAT_PATTERN)

    @field_validator("start")
    @classmethod
    def _to_seconds(cls, v: float | str | None) -> float | None:
        return None if v is None else parse_timestamp(v)


class WaveformRequest(MediaRequest):
    width: int = Field(default=1280, ge=16, le=7680)
    height: int = Field(default=240, ge=16, le=4320)
    color: str = Field(default="0x3399ff", pattern=r"^(0x[0-9A-Fa-f]{6}|[A-Za-z]{3,20})$")


class ResizeRequest(MediaRequest):
    width: int = Field(ge=-2, le=7680)
    height: int = Field(ge=-2, le=4320)
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)

    @model_validator(mode="after")
    def _check_dimensions(self) -> "ResizeRequest":
        for name in ("width", "height"):
            if getattr(self, name) == 0:
                raise ValueError(f"'{name}' must be positive, or -1/-2 to keep aspect ratio")
        if self.width < 0 and self.height < 0:
            raise ValueError("only one of 'width'/'height' may be derived from aspect ratio")
        return self


class RotateRequest(MediaRequest):
    direction: Literal["cw", "ccw", "90", "270", "180", "hflip", "vflip"]
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)


class WatermarkRequest(MediaRequest):
    watermark_url: str
    x: int | str = 10
    y: int | str = 10
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)

    @field_validator("x", "y")
    @classmethod
    def _position(cls, v: int | str) -> str:
        # Plain offsets or overlay expressions such as "W-w-10"
        text = str(v).strip()
        allowed = set("0123456789WHwh+-*/() .")
        if not text or not set(text) <= allowed:
            raise ValueError("position must be an integer or an overlay expression using W, H, w, h")
        return text


class GifRequest(MediaRequest):
    start: float | str = 0
    duration: float = Field(default=5.0, gt=0, le=60)
    fps: int = Field(default=10, ge=1, le=50)
    width: int = Field(default=480, ge=16, le=1920)

    @field_validator("start")
    @classmethod
    def _to_seconds(cls, v: float | str) -> float:
        return parse_timestamp(v)


class ThumbnailRequest(MediaRequest):
    time: float | str = 1
    width: int | None = Field(default=None, ge=16, le=7680)

    @field_validator("time")
    @classmethod
    def _to_seconds(cls, v: float | str) -> float:
        return parse_timestamp(v)


class CompressRequest(MediaRequest):
    crf: int = Field(default=28, ge=0, le=51)
    preset: X264_PRESETS = "veryfast"
    format: str = Field(default="mp4", pattern=FORMAT_PATTERN)


class AnalyzeRequest(MediaRequest):
    pass
