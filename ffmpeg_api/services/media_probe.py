"""Media file information using ffprobe."""

import json
from typing import Any

from ffmpeg_api.exceptions import ProcessingError


PROBE_ARGS = [
    "-v", "quiet",
    "-print_format", "json",
    "-show_format",
    "-show_streams",
]


def _parse_fps(rate: str | None) -> float | None:
    if not rate or "/" not in rate:
        return None
    num, den = rate.split("/", 1)
    try:
        if int(den) <= 0:
            return None
        return round(int(num) / int(den), 3)
    except ValueError:
        return None


def summarize_probe(data: dict[str, Any]) -> dict[str, Any]:
    """
    Condense raw ffprobe output into a media report.

    Args:
        data: Parsed ``ffprobe -show_format -show_streams`` JSON

    Returns:
        Dictionary with container, duration and per-stream info
    """
    format_info = data.get("format", {})

    result: dict[str, Any] = {
        "container": format_info.get("format_name"),
        "duration_ms": None,
        "size_bytes": None,
        "bit_rate": None,
        "has_video": False,
        "has_audio": False,
        "width": None,
        "height": None,
        "fps": None,
        "video_codec": None,
        "audio_codec": None,
        "sample_rate": None,
        "channels": None,
        "streams": [],
    }

    if "duration" in format_info:
        result["duration_ms"] = int(float(format_info["duration"]) * 1000)
    if "size" in format_info:
        result["size_bytes"] = int(format_info["size"])
    if "bit_rate" in format_info:
        result["bit_rate"] = int(format_info["bit_rate"])

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        result["streams"].append(
            {
                "index": stream.get("index"),
                "type": codec_type,
                "codec": stream.get("codec_name"),
            }
        )

        # First stream of each kind wins
        if codec_type == "video" and not result["has_video"]:
            result["has_video"] = True
            result["width"] = stream.get("width")
            result["height"] = stream.get("height")
            result["video_codec"] = stream.get("codec_name")
            result["fps"] = _parse_fps(stream.get("r_frame_rate"))

        elif codec_type == "audio" and not result["has_audio"]:
            result["has_audio"] = True
            result["audio_codec"] = stream.get("codec_name")
            result["sample_rate"] = int(stream.get("sample_rate", 0)) or None
            result["channels"] = stream.get("channels")

    return result


def parse_probe_output(stdout: bytes) -> dict[str, Any]:
    try:
        data = json.loads(stdout.decode("utf-8", errors="ignore") or "{}")
    except json.JSONDecodeError as e:
        raise ProcessingError(0, f"Failed to parse ffprobe output: {e}")
    if not data.get("format") and not data.get("streams"):
        raise ProcessingError(0, "ffprobe returned no media information")
    return summarize_probe(data)
