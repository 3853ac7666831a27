# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Media metadata helpers for streamed responses.
"""

import re

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_FILENAME = "video"
MAX_FILENAME_LENGTH = 100

CONTENT_TYPES: dict[str, str] = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}

_EXTENSIONS = {media_type: ext for ext, media_type in CONTENT_TYPES.items()}

_UNSAFE_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def content_type_for(extension: str | None) -> str:
    """Map a file extension to its media type."""
    if not extension:
        return DEFAULT_CONTENT_TYPE
    return CONTENT_TYPES.get(extension.lower().lstrip("."), DEFAULT_CONTENT_TYPE)


def extension_for(content_type: str | None) -> str | None:
    """Reverse of content_type_for, ignoring media type parameters."""
    if not content_type:
        return None
    return _EXTENSIONS.get(content_type.split(";")[0].strip().lower())


def sanitize_filename(title: str | None) -> str:
    """
    Make a title safe for a Content-Disposition filename.

    Characters other than word characters, whitespace and hyphens are
    dropped, whitespace runs become underscores, and the result is cut to
    100 characters.
    """
    if not title:
        return DEFAULT_FILENAME
    cleaned = _WHITESPACE.sub("_", _UNSAFE_CHARS.sub("", title))
    return cleaned[:MAX_FILENAME_LENGTH] or DEFAULT_FILENAME


def build_filename(title: str | None, extension: str | None) -> str:
    name = sanitize_filename(title)
    return f"{name}.{extension}" if extension else name


__all__ = [
    "CONTENT_TYPES",
    "DEFAULT_CONTENT_TYPE",
    "build_filename",
    "content_type_for",
    "extension_for",
    "sanitize_filename",
]
