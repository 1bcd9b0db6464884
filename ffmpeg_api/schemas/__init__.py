from ffmpeg_api.schemas.media import (
    AnalyzeRequest,
    CompressRequest,
    ConvertAudioRequest,
    ConvertVideoRequest,
    CutAudioRequest,
    CutVideoRequest,
    EqualizeRequest,
    ExtractAudioRequest,
    FadeRequest,
    GifRequest,
    MediaRequest,
    MergeRequest,
    MixAudioRequest,
    MultiMediaRequest,
    ResizeRequest,
    RotateRequest,
    SpeedAudioRequest,
    ThumbnailRequest,
    WatermarkRequest,
    WaveformRequest,
)
from ffmpeg_api.schemas.status import EndpointInfo, HealthcheckReport, ProbeResult, ServiceStatus

__all__ = [
    "MediaRequest",
    "MultiMediaRequest",
    "ConvertAudioRequest",
    "ConvertVideoRequest",
    "MergeRequest",
    "ExtractAudioRequest",
    "EqualizeRequest",
    "SpeedAudioRequest",
    "MixAudioRequest",
    "CutAudioRequest",
    "FadeRequest",
    "WaveformRequest",
    "CutVideoRequest",
    "ResizeRequest",
    "RotateRequest",
    "WatermarkRequest",
    "GifRequest",
    "ThumbnailRequest",
    "CompressRequest",
    "AnalyzeRequest",
    "EndpointInfo",
    "HealthcheckReport",
    "ProbeResult",
    "ServiceStatus",
]
