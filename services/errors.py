"""Translate provider errors into the user-facing taxonomy in models.errors."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from models.errors import RejectionCategory, UploadRejected

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = "RESOURCE_EXHAUSTED"
_EMBEDDED_JSON = re.compile(r"\{[\s\S]*\}")

QUOTA_MESSAGE = (
    "You have exceeded your request limit for the AI service. "
    "Please check your plan and billing details, or try again later."
)
UNKNOWN_GENERATION_MESSAGE = "An unknown error occurred while communicating with the AI service."


def is_rate_limited(exc: BaseException) -> bool:
    """True for HTTP 429 / RESOURCE_EXHAUSTED failures, however the client library spells them."""
    for attr in ("code", "status_code"):
        if getattr(exc, attr, None) == 429:
            return True
    if getattr(exc, "status", None) == RATE_LIMIT_STATUS:
        return True
    text = str(exc)
    return "429" in text or RATE_LIMIT_STATUS in text


def describe_generation_error(exc: BaseException) -> str:
    """
    Build a readable message from a generation-provider failure.

    Provider errors often carry a JSON body inside the exception text, e.g.
    ``400 INVALID_ARGUMENT. {"error": {"message": "...", "status": "..."}}``.
    """
    text = str(exc)
    match = _EMBEDDED_JSON.search(text)
    if match:
        try:
            body = json.loads(match.group(0))
        except ValueError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            if error.get("status") == RATE_LIMIT_STATUS:
                return QUOTA_MESSAGE
            return f"AI Service Error: {error['message']}"
    if text and "{" not in text:
        return text
    return UNKNOWN_GENERATION_MESSAGE


class _ErrorItem(BaseModel):
    reason: str | None = None
    message: str | None = None
    location: str | None = None


class _ErrorDetail(BaseModel):
    code: int | None = None
    message: str | None = None
    errors: list[_ErrorItem] = []


class _ErrorEnvelope(BaseModel):
    error: _ErrorDetail | None = None


def _readable_field(location: str) -> str:
    field = location.split(".")[-1] or "metadata"
    return re.sub(r"([A-Z])", r" \1", field).lower()


def _map_reason(reason: str | None, message: str, location: str | None) -> tuple[RejectionCategory, str]:
    if reason == "quotaExceeded":
        return (
            RejectionCategory.QUOTA_EXCEEDED,
            "YouTube API daily quota exceeded. You have uploaded too many videos today. "
            "Please try again tomorrow.",
        )
    if reason == "youtubeSignupRequired":
        return (
            RejectionCategory.CHANNEL_REQUIRED,
            "You must have a YouTube channel to upload videos. "
            "Please visit YouTube to create one, then try again.",
        )
    if reason == "termsOfServiceNotAccepted":
        return (
            RejectionCategory.TERMS_NOT_ACCEPTED,
            "You must accept the YouTube Terms of Service before uploading. "
            "Please visit the YouTube website to review and accept the terms.",
        )
    if reason == "uploadRejected":
        return (
            RejectionCategory.UPLOAD_REJECTED,
            f'Upload rejected by YouTube. Reason: "{message}". '
            "This may be due to content policy violations or other issues.",
        )
    if reason == "duplicate":
        return (
            RejectionCategory.DUPLICATE,
            "This video has already been uploaded. YouTube does not allow duplicate videos.",
        )
    if reason == "channelSuspended":
        return (
            RejectionCategory.ACCOUNT_SUSPENDED,
            "Cannot upload video because the associated YouTube channel is suspended.",
        )
    if reason == "forbidden":
        return (
            RejectionCategory.FORBIDDEN,
            "Access to the YouTube API was denied. Please ensure you have granted the necessary "
            "permissions and that the YouTube Data API v3 is enabled in your Google Cloud project.",
        )
    if reason == "unauthorized":
        return (
            RejectionCategory.UNAUTHORIZED,
            "Your authorization has expired or is invalid. Please sign in again.",
        )
    if reason == "insufficientPermissions":
        return (
            RejectionCategory.INSUFFICIENT_PERMISSIONS,
            "You do not have sufficient permissions to upload videos to this YouTube channel.",
        )
    if reason == "videoForbidden":
        return (
            RejectionCategory.CONTENT_FORBIDDEN,
            "The video content is forbidden by YouTube policies.",
        )
    if reason == "processingFailure":
        return (
            RejectionCategory.PROCESSING_FAILURE,
            f'YouTube could not process the video. Reason: "{message}". '
            "Please try a different video format or content.",
        )
    if reason == "tooLong":
        if location:
            text = f"The video {_readable_field(location)} is too long. Please shorten it and try again."
        else:
            text = "The video metadata is too long. Please shorten the title, description, or tags."
        return RejectionCategory.FIELD_TOO_LONG, text
    if reason == "requestTooLarge":
        return (
            RejectionCategory.PAYLOAD_TOO_LARGE,
            "The video file is too large to be uploaded. Please try a smaller file.",
        )
    if reason in ("badRequest", "invalidRequest"):
        if location:
            text = (
                f"Invalid video {_readable_field(location)}. YouTube's response: \"{message}\". "
                "Please correct the field and try again."
            )
        else:
            text = (
                f'Invalid video metadata provided. YouTube API says: "{message}". '
                "Please review the video details."
            )
        return RejectionCategory.MALFORMED_FIELD, text
    return (
        RejectionCategory.UNKNOWN,
        message or "An unexpected error occurred during the YouTube upload process.",
    )


def parse_upload_rejection(body: Any, status_code: int | None = None) -> UploadRejected:
    """Map a hosting-service error body onto an UploadRejected with a category."""
    try:
        envelope = _ErrorEnvelope.model_validate(body)
    except ValidationError:
        envelope = _ErrorEnvelope()

    detail = envelope.error
    if detail is None or not detail.errors:
        message = (detail.message if detail else None) or (
            f"An unknown YouTube API error occurred (HTTP {status_code})."
            if status_code
            else "An unknown YouTube API error occurred."
        )
        return UploadRejected(message, status_code=status_code)

    item = detail.errors[0]
    category, message = _map_reason(item.reason, item.message or "", item.location)
    logger.debug(
        "[errors] Upload rejection reason=%s location=%s -> %s",
        item.reason,
        item.location,
        category.value,
    )
    return UploadRejected(
        message,
        category=category,
        reason=item.reason,
        status_code=status_code,
        location=item.location,
    )
