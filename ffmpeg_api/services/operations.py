"""Operation catalogue.

Each HTTP media endpoint is one ``Operation``: an argv builder plus a
description of its inputs and output. The dispatcher applies them all the
same way; nothing here touches the network or the filesystem except the
concat list written by ``merge``.

Declaration order in ``OPERATIONS`` is also the healthcheck report order.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel

from ffmpeg_api.config import Settings
from ffmpeg_api.exceptions import ValidationError
from ffmpeg_api.schemas import media as m
from ffmpeg_api.services.media_probe import PROBE_ARGS
from ffmpeg_api.services.temp_storage import TempArtifacts

InputKind = Literal["single", "multi", "single+overlay"]

AUDIO_CODECS: dict[str, list[str]] = {
    "mp3": ["-acodec", "libmp3lame"],
    "wav": ["-acodec", "pcm_s16le"],
    "flac": ["-acodec", "flac"],
    "aac": ["-acodec", "aac"],
    "m4a": ["-acodec", "aac"],
    "ogg": ["-acodec", "libvorbis"],
    "opus": ["-acodec", "libopus"],
}

VIDEO_CODECS: dict[str, list[str]] = {
    "mp4": ["-c:v", "libx264", "-preset", "ultrafast", "-c:a", "aac"],
    "mov": ["-c:v", "libx264", "-preset", "ultrafast", "-c:a", "aac"],
    "mkv": ["-c:v", "libx264", "-preset", "ultrafast", "-c:a", "aac"],
    "webm": ["-c:v", "libvpx-vp9", "-deadline", "realtime", "-c:a", "libopus"],
}

# Output muxers usable with pipe:1 (non-seekable output)
STREAM_MUXERS: dict[str, list[str]] = {
    "mp3": ["-f", "mp3"],
    "wav": ["-f", "wav"],
    "flac": ["-f", "flac"],
    "aac": ["-f", "adts"],
    "ogg": ["-f", "ogg"],
    "opus": ["-f", "opus"],
    "mp4": ["-movflags", "frag_keyframe+empty_moov", "-f", "mp4"],
    "mov": ["-movflags", "frag_keyframe+empty_moov", "-f", "mov"],
    "mkv": ["-f", "matroska"],
    "webm": ["-f", "webm"],
    "ts": ["-f", "mpegts"],
}

AUDIO_MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "opus": "audio/opus",
}

VIDEO_MEDIA_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "ts": "video/mp2t",
}

ROTATE_FILTERS = {
    "cw": "transpose=1",
    "90": "transpose=1",
    "ccw": "transpose=2",
    "270": "transpose=2",
    "180": "hflip,vflip",
    "hflip": "hflip",
    "vflip": "vflip",
}


def audio_media_type(fmt: str) -> str:
    fmt = fmt.lower()
    return AUDIO_MEDIA_TYPES.get(fmt, f"audio/{fmt}")


def video_media_type(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt in AUDIO_MEDIA_TYPES:
        return AUDIO_MEDIA_TYPES[fmt]
    return VIDEO_MEDIA_TYPES.get(fmt, f"video/{fmt}")


def audio_codec_args(fmt: str) -> list[str]:
    return list(AUDIO_CODECS.get(fmt.lower(), []))


def video_codec_args(fmt: str) -> list[str]:
    fmt = fmt.lower()
    if fmt in AUDIO_CODECS:
        return ["-vn", *AUDIO_CODECS[fmt]]
    return list(VIDEO_CODECS.get(fmt, []))


def atempo_chain(speed: float) -> str:
    """Split a speed factor into atempo stages within [0.5, 2.0]."""
    stages: list[float] = []
    remaining = speed
    while remaining > 2.0:
        stages.append(2.0)
        remaining /= 2.0
    while remaining < 0.5:
        stages.append(0.5)
        remaining /= 0.5
    stages.append(remaining)
    return ",".join(f"atempo={s:.6g}" for s in stages)


def _seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".") or "0"


@dataclass
class JobContext:
    """Everything an argv builder may look at."""

    body: Any
    inputs: list[str]
    output: str
    artifacts: TempArtifacts | None = None
    streaming: bool = False
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def input(self) -> str:
        return self.inputs[0]

    @property
    def format(self) -> str:
        return getattr(self.body, "format", "").lower()

    def output_args(self) -> list[str]:
        """Muxer selection (streaming only) followed by the output target."""
        if not self.streaming:
            return [self.output]
        muxer = STREAM_MUXERS.get(self.format)
        if muxer is None:
            raise ValidationError(f"Format '{self.format}' cannot be streamed")
        return [*muxer, self.output]


@dataclass
class Operation:
    """Declarative description of one media endpoint."""

    name: str
    request_model: type[BaseModel]
    build_argv: Callable[[JobContext], list[str]] | None
    output_extension: Callable[[Any], str]
    content_type: Callable[[Any], str]
    sample_body: Callable[[Settings], dict[str, Any]]
    inputs: InputKind = "single"
    binary: Literal["ffmpeg", "ffprobe"] = "ffmpeg"
    output_kind: Literal["file", "json"] = "file"
    disposition: Literal["inline", "attachment"] = "inline"
    streamable: bool = False
    prepare: Callable[[JobContext], None] | None = None
    default_filename: Callable[[Any], str] | None = None
    summary: str = ""

    @property
    def path(self) -> str:
        return f"/{self.name}"

    @property
    def implemented(self) -> bool:
        return self.build_argv is not None


# =============================================================================
# argv builders
# =============================================================================


def _convert_audio(ctx: JobContext) -> list[str]:
    return ["-i", ctx.input, "-vn", *audio_codec_args(ctx.format), *ctx.output_args()]


def _convert_video(ctx: JobContext) -> list[str]:
    return ["-i", ctx.input, *video_codec_args(ctx.format), *ctx.output_args()]


def _write_concat_list(ctx: JobContext) -> None:
    if ctx.artifacts is None:
        raise RuntimeError("merge needs a temp artifact scope for its concat list")
    list_path = ctx.artifacts.allocate("list", "txt")
    lines = []
    for path in ctx.inputs:
        escaped = path.replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    Path(list_path).write_text("\n".join(lines) + "\n", encoding="utf-8")
    ctx.extra["concat_list"] = str(list_path)


def _merge(ctx: JobContext) -> list[str]:
    return ["-f", "concat", "-safe", "0", "-i", ctx.extra["concat_list"], "-c", "copy", ctx.output]


def _extract_audio(ctx: JobContext) -> list[str]:
    return [
        "-i", ctx.input,
        "-vn",
        "-acodec", "libmp3lame",
        "-ab", "192k",
        "-ar", "44100",
        "-ac", "2",
        ctx.output,
    ]


def _speed_audio(ctx: JobContext) -> list[str]:
    return [
        "-i", ctx.input,
        "-vn",
        "-filter:a", atempo_chain(ctx.body.speed),
        *audio_codec_args(ctx.format),
        ctx.output,
    ]


def _mix_audio(ctx: JobContext) -> list[str]:
    argv: list[str] = []
    for path in ctx.inputs:
        argv.extend(["-i", path])
    argv.extend([
        "-filter_complex", f"amix=inputs={len(ctx.inputs)}:duration=longest:dropout_transition=0",
        "-vn",
        *audio_codec_args(ctx.format),
        ctx.output,
    ])
    return argv


def _cut_audio(ctx: JobContext) -> list[str]:
    return [
        "-i", ctx.input,
        "-ss", _seconds(ctx.body.start),
        "-to", _seconds(ctx.body.end),
        "-vn",
        *audio_codec_args(ctx.format),
        ctx.output,
    ]


def _fade(ctx: JobContext) -> list[str]:
    body = ctx.body
    duration = _seconds(body.duration)
    if body.type == "in":
        audio_filter = f"afade=t=in:st={_seconds(body.start or 0)}:d={duration}"
    elif body.start is not None:
        audio_filter = f"afade=t=out:st={_seconds(body.start)}:d={duration}"
    else:
        # Fade out the tail without knowing the input duration
        audio_filter = f"areverse,afade=t=in:d={duration},areverse"
    return ["-i", ctx.input, "-vn", "-af", audio_filter, *audio_codec_args(ctx.format), ctx.output]


def _waveform(ctx: JobContext) -> list[str]:
    body = ctx.body
    return [
        "-i", ctx.input,
        "-filter_complex", f"showwavespic=s={body.width}x{body.height}:colors={body.color}",
        "-frames:v", "1",
        ctx.output,
    ]


def _cut_video(ctx: JobContext) -> list[str]:
    return [
        "-i", ctx.input,
        "-ss", _seconds(ctx.body.start),
        "-to", _seconds(ctx.body.end),
        *video_codec_args(ctx.format),
        ctx.output,
    ]


def _resize(ctx: JobContext) -> list[str]:
    body = ctx.body
    return ["-i", ctx.input, "-vf", f"scale={body.width}:{body.height}", *video_codec_args(ctx.format), ctx.output]


def _rotate(ctx: JobContext) -> list[str]:
    return ["-i", ctx.input, "-vf", ROTATE_FILTERS[ctx.body.direction], *video_codec_args(ctx.format), ctx.output]


def _watermark(ctx: JobContext) -> list[str]:
    video, overlay = ctx.inputs[0], ctx.inputs[1]
    return [
        "-i", video,
        "-i", overlay,
        "-filter_complex", f"overlay={ctx.body.x}:{ctx.body.y}",
        *video_codec_args(ctx.format),
        ctx.output,
    ]


def _gif(ctx: JobContext) -> list[str]:
    body = ctx.body
    palette = (
        f"fps={body.fps},scale={body.width}:-1:flags=lanczos,"
        "split[s0][s1];[s0]palettegen[p];[s1][p]paletteuse"
    )
    return [
        "-ss", _seconds(body.start),
        "-t", _seconds(body.duration),
        "-i", ctx.input,
        "-vf", palette,
        "-loop", "0",
        ctx.output,
    ]


def _thumbnail(ctx: JobContext) -> list[str]:
    argv = ["-ss", _seconds(ctx.body.time), "-i", ctx.input, "-frames:v", "1"]
    if ctx.body.width:
        argv.extend(["-vf", f"scale={ctx.body.width}:-2"])
    argv.extend(["-q:v", "2", ctx.output])
    return argv


def _compress(ctx: JobContext) -> list[str]:
    body = ctx.body
    return [
        "-i", ctx.input,
        "-c:v", "libx264",
        "-crf", str(body.crf),
        "-preset", body.preset,
        "-c:a", "aac",
        "-b:a", "128k",
        ctx.output,
    ]


# =============================================================================
# Catalogue
# =============================================================================


def _fmt(body: Any) -> str:
    return body.format.lower()


def _video_sample(settings: Settings, **params: Any) -> dict[str, Any]:
    return {"url": settings.sample_video_url, **params}


def _pair_sample(settings: Settings, **params: Any) -> dict[str, Any]:
    return {"urls": [settings.sample_video_url, settings.sample_video_url_alt], **params}


OPERATIONS: list[Operation] = [
    Operation(
        name="convert-audio",
        request_model=m.ConvertAudioRequest,
        build_argv=_convert_audio,
        output_extension=_fmt,
        content_type=lambda b: audio_media_type(b.format),
        sample_body=_video_sample,
        streamable=True,
        summary="Transcode the audio track to another format",
    ),
    Operation(
        name="convert-video",
        request_model=m.ConvertVideoRequest,
        build_argv=_convert_video,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=_video_sample,
        streamable=True,
        summary="Transcode video to another container/codec",
    ),
    Operation(
        name="merge",
        request_model=m.MergeRequest,
        build_argv=_merge,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=lambda s: _pair_sample(s, format="mp4", filename="merge_test"),
        inputs="multi",
        disposition="attachment",
        prepare=_write_concat_list,
        default_filename=lambda b: f"merged_{int(time.time() * 1000)}",
        summary="Concatenate two or more files without re-encoding",
    ),
    Operation(
        name="extract-audio",
        request_model=m.ExtractAudioRequest,
        build_argv=_extract_audio,
        output_extension=lambda b: "mp3",
        content_type=lambda b: "audio/mpeg",
        sample_body=_video_sample,
        summary="Extract the audio track as 192k stereo MP3",
    ),
    Operation(
        name="equalize",
        request_model=m.EqualizeRequest,
        build_argv=None,
        output_extension=lambda b: "mp3",
        content_type=lambda b: "audio/mpeg",
        sample_body=_video_sample,
        summary="Not implemented",
    ),
    Operation(
        name="speed-audio",
        request_model=m.SpeedAudioRequest,
        build_argv=_speed_audio,
        output_extension=_fmt,
        content_type=lambda b: audio_media_type(b.format),
        sample_body=lambda s: _video_sample(s, speed=1.5),
        summary="Change playback speed without changing pitch",
    ),
    Operation(
        name="mix-audio",
        request_model=m.MixAudioRequest,
        build_argv=_mix_audio,
        output_extension=_fmt,
        content_type=lambda b: audio_media_type(b.format),
        sample_body=_pair_sample,
        inputs="multi",
        summary="Mix several audio sources into one track",
    ),
    Operation(
        name="cut-audio",
        request_model=m.CutAudioRequest,
        build_argv=_cut_audio,
        output_extension=_fmt,
        content_type=lambda b: audio_media_type(b.format),
        sample_body=lambda s: _video_sample(s, start=0, end=3),
        summary="Keep the audio between start and end",
    ),
    Operation(
        name="fade",
        request_model=m.FadeRequest,
        build_argv=_fade,
        output_extension=_fmt,
        content_type=lambda b: audio_media_type(b.format),
        sample_body=lambda s: _video_sample(s, type="in", duration=2),
        summary="Apply an audio fade in or fade out",
    ),
    Operation(
        name="waveform",
        request_model=m.WaveformRequest,
        build_argv=_waveform,
        output_extension=lambda b: "png",
        content_type=lambda b: "image/png",
        sample_body=_video_sample,
        summary="Render the audio waveform as a PNG",
    ),
    Operation(
        name="cut-video",
        request_model=m.CutVideoRequest,
        build_argv=_cut_video,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=lambda s: _video_sample(s, start=0, end=3),
        summary="Keep the video between start and end",
    ),
    Operation(
        name="resize",
        request_model=m.ResizeRequest,
        build_argv=_resize,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=lambda s: _video_sample(s, width=320, height=-2),
        summary="Scale video to width x height",
    ),
    Operation(
        name="rotate",
        request_model=m.RotateRequest,
        build_argv=_rotate,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=lambda s: _video_sample(s, direction="cw"),
        summary="Rotate or flip video",
    ),
    Operation(
        name="watermark",
        request_model=m.WatermarkRequest,
        build_argv=_watermark,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=lambda s: _video_sample(s, watermark_url=s.sample_image_url, x=10, y=10),
        inputs="single+overlay",
        summary="Overlay an image at x,y",
    ),
    Operation(
        name="gif",
        request_model=m.GifRequest,
        build_argv=_gif,
        output_extension=lambda b: "gif",
        content_type=lambda b: "image/gif",
        sample_body=lambda s: _video_sample(s, duration=2),
        summary="Render a palette-optimised animated GIF",
    ),
    Operation(
        name="thumbnail",
        request_model=m.ThumbnailRequest,
        build_argv=_thumbnail,
        output_extension=lambda b: "jpg",
        content_type=lambda b: "image/jpeg",
        sample_body=lambda s: _video_sample(s, time=1),
        summary="Grab one frame as JPEG",
    ),
    Operation(
        name="compress",
        request_model=m.CompressRequest,
        build_argv=_compress,
        output_extension=_fmt,
        content_type=lambda b: video_media_type(b.format),
        sample_body=_video_sample,
        summary="Re-encode with x264 at the given CRF/preset",
    ),
    Operation(
        name="analyze",
        request_model=m.AnalyzeRequest,
        build_argv=lambda ctx: [*PROBE_ARGS, ctx.input],
        output_extension=lambda b: "json",
        content_type=lambda b: "application/json",
        sample_body=_video_sample,
        binary="ffprobe",
        output_kind="json",
        summary="Probe container and stream metadata",
    ),
]

OPERATIONS_BY_NAME: dict[str, Operation] = {op.name: op for op in OPERATIONS}


def get_operation(name: str) -> Operation:
    return OPERATIONS_BY_NAME[name]
