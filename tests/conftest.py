"""Shared fixtures: in-memory images and a fake HTTP session."""

from __future__ import annotations

import os
import struct
import threading
import time
import zlib
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from io import BytesIO
from typing import Dict, List, Optional, Tuple, Union

import pytest
from PIL import Image
from requests.structures import CaseInsensitiveDict

from external_media.config import AdmissionPolicy, ProbePolicy

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


def make_image(fmt: str, size: Tuple[int, int] = (32, 16), **save_kwargs) -> bytes:
    """Encode a solid-colour image in ``fmt`` with Pillow."""
    buffer = BytesIO()
    Image.new("RGB", size, (200, 40, 10)).save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_noisy_png(size: Tuple[int, int] = (256, 256)) -> bytes:
    """A PNG whose pixel data is incompressible, so the body is large."""
    width, height = size
    image = Image.frombytes("RGB", size, os.urandom(width * height * 3))
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def png_header(width: int, height: int) -> bytes:
    """Signature, IHDR and the start of an IDAT chunk, without pixel data."""

    def chunk(tag: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(tag + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + struct.pack(">I", 1024) + b"IDAT"


class FakeResponse:
    """Just enough of ``requests.Response`` for the probe."""

    def __init__(
        self,
        url: str,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        chunk: Optional[int] = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body
        self.chunk = chunk
        self.bytes_read = 0
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def is_redirect(self) -> bool:
        return "location" in self.headers and self.status_code in REDIRECT_STATUSES

    def iter_content(self, chunk_size: int = 1):
        size = self.chunk or chunk_size
        for start in range(0, len(self.body), size):
            piece = self.body[start : start + size]
            self.bytes_read += len(piece)
            yield piece

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves canned responses (or raises canned errors) keyed by URL."""

    def __init__(self, routes: Dict[str, Union[FakeResponse, Exception]]) -> None:
        self.routes = routes
        self.calls: List[Tuple[str, dict]] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append((url, kwargs))
        target = self.routes.get(url)
        if target is None:
            raise AssertionError(f"Unexpected request to {url}")
        if isinstance(target, Exception):
            raise target
        return target

    def requested(self) -> List[str]:
        return [url for url, _ in self.calls]


def image_response(url: str, fmt: str = "JPEG", mime: str = "image/jpeg", **kwargs) -> FakeResponse:
    body = make_image(fmt)
    headers = {"Content-Type": mime, "Content-Length": str(len(body))}
    return FakeResponse(url, headers=headers, body=body, **kwargs)


@pytest.fixture
def admission_policy() -> AdmissionPolicy:
    return AdmissionPolicy()


@pytest.fixture
def probe_policy() -> ProbePolicy:
    return ProbePolicy()


class TricklingHandler(BaseHTTPRequestHandler):
    """Sends image headers, then the body one byte at a time."""

    interval = 0.2
    body = png_header(64, 64)[:24] + b"\x00" * 40

    def do_GET(self):  # noqa: N802
        self.send_response(200)
        self.send_header("Content-Type", "image/png")
        self.send_header("Content-Length", "100000")
        self.end_headers()
        try:
            for byte in self.body:
                self.wfile.write(bytes([byte]))
                self.wfile.flush()
                time.sleep(self.interval)
        except OSError:
            pass

    def log_message(self, format, *args):  # pylint: disable=redefined-builtin
        pass


@pytest.fixture
def trickling_server():
    """Local HTTP server whose body arrives far slower than any probe timeout."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), TricklingHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/slow.png"
    finally:
        server.shutdown()
        server.server_close()
