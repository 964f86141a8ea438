"""Tests for external_media.batch."""

from __future__ import annotations

import asyncio
import functools
import threading
import time

import pytest

from conftest import FakeSession, image_response
from external_media.batch import process_batch, process_batch_sync, validate_url
from external_media.config import AdmissionPolicy, ProbePolicy
from external_media.errors import ProbeError
from external_media.images import probe_image
from external_media.models import Accepted, ImageMetadata, ReasonCode, Rejected

METADATA = ImageMetadata(width=640, height=480, mime_type="image/jpeg")


def make_prober(delays=None, failures=None, calls=None):
    """Return a prober that sleeps per URL and fails for selected URLs."""
    delays = delays or {}
    failures = failures or {}

    def prober(url, policy, admission=None):
        if calls is not None:
            calls.append(url)
        time.sleep(delays.get(url, 0))
        if url in failures:
            raise ProbeError(failures[url])
        return METADATA

    return prober


class TestValidateUrl:
    def test_admission_failure_skips_probe(self, admission_policy, probe_policy):
        calls = []
        outcome = validate_url(
            "http://localhost/x.png", admission_policy, probe_policy, make_prober(calls=calls)
        )
        assert outcome == Rejected("http://localhost/x.png", ReasonCode.BLOCKED_HOST)
        assert calls == []

    def test_prober_receives_normalized_url(self, admission_policy, probe_policy):
        calls = []
        outcome = validate_url(
            "HTTPS://CDN.Example.com/a.jpg#x", admission_policy, probe_policy, make_prober(calls=calls)
        )
        assert outcome == Accepted("HTTPS://CDN.Example.com/a.jpg#x", METADATA)
        assert calls == ["https://cdn.example.com/a.jpg"]

    def test_unexpected_error_becomes_network_unreachable(self, admission_policy, probe_policy):
        def broken(url, policy, admission=None):
            raise RuntimeError("boom")

        outcome = validate_url("https://cdn.example.com/a.jpg", admission_policy, probe_policy, broken)
        assert outcome.reason is ReasonCode.NETWORK_UNREACHABLE


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_every_input_yields_exactly_one_outcome(self):
        urls = [
            "https://a.example.com/1.jpg",
            "ftp://example.com/x.png",
            "https://b.example.com/2.jpg",
            "not a url",
            "https://c.example.com/3.jpg",
        ]
        prober = make_prober(failures={"https://b.example.com/2.jpg": ReasonCode.TOO_LARGE})
        result = await process_batch(urls, prober=prober)

        assert len(result.successful) + len(result.failed) == len(urls)
        assert sorted(o.url for o in result.successful + result.failed) == sorted(urls)
        assert [o.url for o in result.successful] == [
            "https://a.example.com/1.jpg",
            "https://c.example.com/3.jpg",
        ]
        assert [(o.url, o.reason) for o in result.failed] == [
            ("ftp://example.com/x.png", ReasonCode.UNSUPPORTED_SCHEME),
            ("https://b.example.com/2.jpg", ReasonCode.TOO_LARGE),
            ("not a url", ReasonCode.MALFORMED_URL),
        ]

    @pytest.mark.asyncio
    async def test_order_is_preserved_when_completion_order_differs(self):
        urls = [f"https://img{i}.example.com/{i}.jpg" for i in range(6)]
        delays = {url: 0.05 * (len(urls) - i) for i, url in enumerate(urls)}
        failures = {urls[1]: ReasonCode.DISALLOWED_TYPE, urls[4]: ReasonCode.INVALID_IMAGE_DATA}
        result = await process_batch(
            urls, prober=make_prober(delays, failures), max_concurrency=6
        )
        assert [o.url for o in result.successful] == [urls[0], urls[2], urls[3], urls[5]]
        assert [o.url for o in result.failed] == [urls[1], urls[4]]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def prober(url, policy, admission=None):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return METADATA

        urls = [f"https://cdn.example.com/{i}.jpg" for i in range(8)]
        result = await process_batch(urls, prober=prober, max_concurrency=2)
        assert len(result.successful) == 8
        assert state["peak"] <= 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self):
        urls = ["https://a.example.com/1.jpg", "http://127.0.0.1/x.png"]
        first = await process_batch(urls, prober=make_prober())
        second = await process_batch(urls, prober=make_prober())
        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_cancellation_abandons_in_flight_probes(self):
        release = threading.Event()

        def hanging(url, policy, admission=None):
            release.wait(5)
            return METADATA

        task = asyncio.create_task(
            process_batch(["https://slow.example.com/x.jpg"], prober=hanging)
        )
        await asyncio.sleep(0.05)
        started = time.perf_counter()
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
            assert time.perf_counter() - started < 1
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_rejects_invalid_concurrency(self):
        with pytest.raises(ValueError):
            await process_batch(["https://a.example.com/x.jpg"], max_concurrency=0)

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        result = await process_batch([])
        assert result.to_dict() == {"successful": [], "failed": []}


class TestEndToEnd:
    def test_mixed_batch_with_default_policy(self):
        url = "https://cdn.example.com/cat.jpg"
        session = FakeSession({url: image_response(url)})
        prober = functools.partial(probe_image, session=session)

        result = process_batch_sync(
            [url, "not a url", "http://localhost/x.png"],
            AdmissionPolicy(),
            ProbePolicy(),
            prober=prober,
        )

        assert result.to_dict() == {
            "successful": [
                {"url": url, "metadata": {"width": 32, "height": 16, "mime_type": "image/jpeg"}}
            ],
            "failed": [
                {"url": "not a url", "reason": "MalformedURL"},
                {"url": "http://localhost/x.png", "reason": "BlockedHost"},
            ],
        }
        assert session.requested() == [url]
