"""Content types for uploaded files."""
from __future__ import annotations

from pathlib import Path

OCTET_STREAM = "application/octet-stream"

# chat-relevant formats; everything else goes up as an octet stream
MIME_TYPES = {
    "avif": "image/avif",
    "gif": "image/gif",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "jxl": "image/jxl",
    "heic": "image/heic",
    "heics": "image/heic-sequence",
    "heif": "image/heif",
    "heifs": "image/heif-sequence",
    "m4a": "audio/m4a",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "mp4a": "audio/mp4",
    "pdf": "application/pdf",
    "png": "image/png",
    "tar": "application/x-tar",
    "tar.gz": "application/gzip",
    "wav": "audio/wav",
    "webp": "image/webp",
    "zip": "application/zip",
}

_MSGTYPES = {"image": "m.image", "video": "m.video", "audio": "m.audio"}


def mime_from_path(path: Path) -> str:
    name = path.name.lower()
    if name.endswith(".tar.gz"):
        return MIME_TYPES["tar.gz"]
    return MIME_TYPES.get(path.suffix.lower().lstrip("."), OCTET_STREAM)


def msgtype_for(mimetype: str) -> str:
    """``image/png`` -> ``m.image``; anything unrecognised is an ``m.file``."""
    return _MSGTYPES.get(mimetype.split("/", 1)[0], "m.file")
