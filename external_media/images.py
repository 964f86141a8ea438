"""Bounded network probe that confirms a remote URL is a real image."""

from __future__ import annotations

import logging
import socket
import struct
import threading
import time
from io import BytesIO
from typing import Any, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin

import requests
from filetype import guess
from PIL import Image

from .admission import admit
from .config import AdmissionPolicy, ProbePolicy
from .errors import AdmissionError, ProbeError
from .models import ImageMetadata, ReasonCode

logger = logging.getLogger("external_media")

CHUNK_SIZE = 8192
# filetype never needs more than this many bytes to recognise an image signature.
SIGNATURE_BYTES = 262

_MIME_ALIASES = {"image/apng": "image/png"}
_PILLOW_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
}

HeaderValue = Union[str, Sequence[str], None]


def first_header_value(value: HeaderValue) -> Optional[str]:
    """Collapse a header that arrived as one string, a joined list, or a sequence."""
    if value is None:
        return None
    if not isinstance(value, str):
        if not value:
            return None
        value = value[0]
    first = value.split(",", 1)[0].strip()
    return first or None


def normalize_content_type(value: HeaderValue) -> Optional[str]:
    """Return the lower-cased media type without parameters."""
    first = first_header_value(value)
    if first is None:
        return None
    mime = first.split(";", 1)[0].strip().lower()
    return mime or None


def parse_content_length(value: HeaderValue) -> Optional[int]:
    first = first_header_value(value)
    if first is None:
        return None
    try:
        length = int(first)
    except ValueError:
        logger.debug("Ignoring unparseable Content-Length %r", first)
        return None
    return length if length >= 0 else None


def check_declared_headers(headers: Any, policy: ProbePolicy) -> str:
    """Validate the advisory Content-Type and Content-Length headers.

    Returns the declared MIME type. Raises :class:`ProbeError` with
    ``DisallowedType`` or ``TooLarge`` when the declaration breaks policy.
    """
    declared_type = normalize_content_type(headers.get("Content-Type"))
    if declared_type is None or declared_type not in policy.allowed_mime_types:
        raise ProbeError(
            ReasonCode.DISALLOWED_TYPE,
            f"Declared Content-Type {declared_type!r} is not allowed",
        )
    declared_length = parse_content_length(headers.get("Content-Length"))
    if declared_length is not None and declared_length > policy.max_bytes:
        raise ProbeError(
            ReasonCode.TOO_LARGE,
            f"Declared Content-Length {declared_length} exceeds {policy.max_bytes} bytes",
        )
    return declared_type


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect the image MIME type from the file signature using filetype."""
    if not data:
        return None
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        return _MIME_ALIASES.get(kind.mime, kind.mime)
    return None


def webp_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    """Read canvas size from the first chunk of a RIFF/WebP container."""
    if len(data) < 30 or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        return None
    chunk = data[12:16]
    if chunk == b"VP8 ":
        if data[23:26] != b"\x9d\x01\x2a":
            return None
        width, height = struct.unpack("<HH", data[26:30])
        return width & 0x3FFF, height & 0x3FFF
    if chunk == b"VP8L":
        if data[20] != 0x2F:
            return None
        bits = int.from_bytes(data[21:25], "little")
        return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1
    if chunk == b"VP8X":
        width = int.from_bytes(data[24:27], "little") + 1
        height = int.from_bytes(data[27:30], "little") + 1
        return width, height
    return None


def _pillow_dimensions(data: bytes, mime: str) -> Optional[Tuple[int, int]]:
    # Image.open only parses the header; pixel data is never decoded here.
    pillow_format = _PILLOW_FORMATS.get(mime)
    formats = [pillow_format] if pillow_format else None
    try:
        with Image.open(BytesIO(data), formats=formats) as image:
            return image.size
    except Image.DecompressionBombError as exc:
        raise ProbeError(ReasonCode.INVALID_IMAGE_DATA, str(exc)) from exc
    except (OSError, SyntaxError, EOFError, ValueError, struct.error):
        return None


def image_dimensions(data: bytes, mime: str) -> Optional[Tuple[int, int]]:
    """Return (width, height) once enough of the header is present, else None."""
    # Pillow's WebP plugin wants the complete file, so the chunk header is read directly.
    if mime == "image/webp":
        return webp_dimensions(data)
    return _pillow_dimensions(data, mime)


def inspect_image_bytes(data: bytes, policy: ProbePolicy) -> Optional[ImageMetadata]:
    """Identify an image from a (possibly partial) body prefix.

    Returns ``None`` when more bytes are needed. Raises :class:`ProbeError`
    once the prefix proves the body is not an acceptable image.
    """
    mime = detect_image_format(data)
    if mime is None:
        if len(data) >= SIGNATURE_BYTES:
            raise ProbeError(
                ReasonCode.INVALID_IMAGE_DATA, "Body has no recognised image signature"
            )
        return None
    if mime not in policy.allowed_mime_types:
        raise ProbeError(
            ReasonCode.DISALLOWED_TYPE, f"Body signature is {mime}, which is not allowed"
        )
    size = image_dimensions(data, mime)
    if size is None:
        return None
    width, height = size
    if width <= 0 or height <= 0:
        raise ProbeError(
            ReasonCode.INVALID_IMAGE_DATA, f"Image reports dimensions {width}x{height}"
        )
    return ImageMetadata(width=width, height=height, mime_type=mime)


def _remaining(deadline: float, url: str) -> float:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ProbeError(ReasonCode.NETWORK_UNREACHABLE, f"Timed out probing {url}")
    return remaining


def open_stream(
    url: str,
    policy: ProbePolicy,
    session: requests.Session,
    admission: AdmissionPolicy,
    deadline: float,
) -> requests.Response:
    """Issue a streamed GET, following redirects only to admissible targets."""
    current = url
    for _ in range(policy.max_redirects + 1):
        try:
            response = session.get(
                current,
                stream=True,
                allow_redirects=False,
                timeout=_remaining(deadline, current),
                headers={"User-Agent": policy.user_agent, "Accept": "image/*"},
            )
        except requests.RequestException as exc:
            raise ProbeError(
                ReasonCode.NETWORK_UNREACHABLE, f"Request to {current} failed: {exc}"
            ) from exc

        if response.is_redirect:
            location = response.headers.get("Location", "")
            response.close()
            try:
                current = admit(urljoin(current, location), admission)
            except AdmissionError as exc:
                raise ProbeError(
                    exc.reason, f"Redirect from {url} rejected: {exc}"
                ) from exc
            logger.debug("Following redirect to %s", current)
            continue

        if not response.ok:
            response.close()
            raise ProbeError(
                ReasonCode.NETWORK_UNREACHABLE,
                f"{current} answered with HTTP {response.status_code}",
            )
        return response

    raise ProbeError(
        ReasonCode.NETWORK_UNREACHABLE,
        f"Exceeded {policy.max_redirects} redirects starting from {url}",
    )


def abort_stream(response: requests.Response) -> None:
    """Wake a read blocked on ``response`` by shutting its socket down.

    Closing the response would wait on the reader's buffer lock, while a
    socket shutdown makes the pending receive return immediately.
    """
    connection = getattr(getattr(response, "raw", None), "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        return
    logger.debug("Deadline reached, aborting %s", response.url)
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        logger.debug("Socket for %s already closed: %s", response.url, exc)


def read_structure(
    response: requests.Response, policy: ProbePolicy, deadline: float
) -> ImageMetadata:
    """Read at most ``policy.read_limit`` body bytes until the image is identified.

    A timer shuts the connection down at ``deadline``, so a server that keeps
    trickling bytes cannot hold the probe open past its timeout.
    """
    limit = policy.read_limit
    buffer = bytearray()
    timer = threading.Timer(
        max(deadline - time.monotonic(), 0.0), abort_stream, (response,)
    )
    timer.daemon = True
    timer.start()
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            buffer.extend(chunk[: limit - len(buffer)])
            metadata = inspect_image_bytes(bytes(buffer), policy)
            if metadata is not None:
                return metadata
            if len(buffer) >= limit:
                break
            _remaining(deadline, response.url)
    except requests.RequestException as exc:
        if time.monotonic() >= deadline:
            raise ProbeError(
                ReasonCode.NETWORK_UNREACHABLE, f"Timed out reading {response.url}"
            ) from exc
        raise ProbeError(
            ReasonCode.NETWORK_UNREACHABLE, f"Reading {response.url} failed: {exc}"
        ) from exc
    except (OSError, ValueError) as exc:
        if time.monotonic() < deadline:
            raise
        raise ProbeError(
            ReasonCode.NETWORK_UNREACHABLE, f"Timed out reading {response.url}"
        ) from exc
    finally:
        timer.cancel()
    _remaining(deadline, response.url)
    raise ProbeError(
        ReasonCode.INVALID_IMAGE_DATA,
        f"Could not identify an image in the first {len(buffer)} bytes",
    )


def _probe(
    url: str,
    policy: ProbePolicy,
    session: requests.Session,
    admission: AdmissionPolicy,
) -> ImageMetadata:
    started = time.perf_counter()
    deadline = time.monotonic() + policy.timeout_seconds
    response = open_stream(url, policy, session, admission, deadline)
    try:
        declared_type = check_declared_headers(response.headers, policy)
        metadata = read_structure(response, policy, deadline)
    finally:
        response.close()
    if metadata.mime_type != declared_type:
        logger.debug(
            "%s declared %s but its signature is %s", url, declared_type, metadata.mime_type
        )
    logger.debug(
        "Probed %s -> %dx%d %s in %.2fs",
        url,
        metadata.width,
        metadata.height,
        metadata.mime_type,
        time.perf_counter() - started,
    )
    return metadata


def probe_image(
    url: str,
    policy: Optional[ProbePolicy] = None,
    session: Optional[requests.Session] = None,
    admission: Optional[AdmissionPolicy] = None,
) -> ImageMetadata:
    """Probe an admitted URL and return the image's confirmed metadata.

    Makes a single streamed request (redirects are re-admitted against
    ``admission``), validates the declared headers, then reads a bounded
    prefix of the body to confirm the type and dimensions. Raises
    :class:`ProbeError` with the matching :class:`ReasonCode` on failure.
    """
    policy = policy or ProbePolicy()
    admission = admission or AdmissionPolicy()
    if session is None:
        with requests.Session() as own_session:
            return _probe(url, policy, own_session, admission)
    return _probe(url, policy, session, admission)
