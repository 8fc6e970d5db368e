"""Environment-driven configuration. Values come from the process env or a .env file."""

import os

from models.errors import ConfigurationError

DEFAULT_VIDEO_MODEL = "veo-2.0-generate-001"
YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
UPLOAD_CHUNK_GRANULARITY = 256 * 1024     # resumable chunks must be multiples of this
DEFAULT_UPLOAD_CHUNK_SIZE = 32 * UPLOAD_CHUNK_GRANULARITY  # 8 MiB


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


def get_gemini_api_key() -> str:
    """Gemini API key from GEMINI_API_KEY, falling back to GOOGLE_API_KEY."""
    api_key = _env("GEMINI_API_KEY") or _env("GOOGLE_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "Gemini API key is not configured. Set GEMINI_API_KEY in the environment or .env."
        )
    return api_key


def get_video_model() -> str:
    return _env("VEO_MODEL") or DEFAULT_VIDEO_MODEL


def get_youtube_access_token() -> str:
    token = _env("YOUTUBE_ACCESS_TOKEN")
    if not token:
        raise ConfigurationError(
            "YouTube access token is not configured. Sign in and set YOUTUBE_ACCESS_TOKEN."
        )
    return token


def get_upload_url() -> str:
    return _env("YOUTUBE_UPLOAD_URL") or YOUTUBE_UPLOAD_URL


def get_upload_chunk_size() -> int:
    """Chunk size in bytes, rounded down to the 256 KiB granularity (never below one unit)."""
    raw = _env("UPLOAD_CHUNK_SIZE")
    if not raw:
        return DEFAULT_UPLOAD_CHUNK_SIZE
    try:
        requested = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"UPLOAD_CHUNK_SIZE must be an integer, got {raw!r}.") from exc
    units = max(1, requested // UPLOAD_CHUNK_GRANULARITY)
    return units * UPLOAD_CHUNK_GRANULARITY
