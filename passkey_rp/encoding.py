"""Unpadded base64url helpers used for every binary field on the wire."""

from __future__ import annotations

import base64
import binascii
import re

from .errors import malformed

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: object) -> bytes:
    """Decode canonical unpadded base64url.

    Padding, the standard ``+``/``/`` alphabet, impossible lengths and
    non-zero trailing bits are all rejected as malformed input.
    """
    if not isinstance(value, str):
        raise malformed("Expected a base64url string")
    if not _B64URL_RE.fullmatch(value):
        raise malformed("Value is not unpadded base64url")
    if len(value) % 4 == 1:
        raise malformed("Invalid base64url length")
    padding = "=" * (-len(value) % 4)
    try:
        decoded = base64.urlsafe_b64decode(value + padding)
    except (binascii.Error, ValueError) as exc:
        raise malformed("Invalid base64url value") from exc
    if b64url_encode(decoded) != value:
        raise malformed("Non-canonical base64url value")
    return decoded
