"""HTTP API that runs media jobs through the ffmpeg binary."""

__version__ = "2.1.0"
