import re
from urllib.parse import parse_qs, urlparse

_VIDEO_ID = re.compile(r"^[a-zA-Z0-9_-]{11}$")
VIDEO_ID_LENGTH = 11


def parse_media_ref(value: str) -> str:
    """Extract a video id from a bare id or a watch/short/embed link. Empty string if none."""
    value = value.strip()
    if not value:
        return ""
    if _VIDEO_ID.match(value):
        return value
    url = urlparse(value)
    if not url.scheme or not url.hostname:
        return ""
    if "youtu.be" in url.hostname:
        return url.path.lstrip("/")[:VIDEO_ID_LENGTH]
    query = parse_qs(url.query)
    if "v" in query:
        return query["v"][0][:VIDEO_ID_LENGTH]
    parts = url.path.split("/")
    if "embed" in parts:
        idx = parts.index("embed")
        if idx + 1 < len(parts) and parts[idx + 1]:
            return parts[idx + 1][:VIDEO_ID_LENGTH]
    return ""


def normalize_ws_url(value: str) -> str:
    value = value.strip()
    if value.startswith("https://"):
        return "wss://" + value[len("https://"):]
    if value.startswith("http://"):
        return "ws://" + value[len("http://"):]
    return value
