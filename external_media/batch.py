"""Run admission and probing over a batch of URLs and partition the outcomes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence

from .admission import admit
from .config import DEFAULT_MAX_CONCURRENCY, AdmissionPolicy, ProbePolicy
from .errors import ValidationError
from .images import probe_image
from .models import (
    Accepted,
    BatchResult,
    ImageMetadata,
    ReasonCode,
    Rejected,
    ValidationOutcome,
)

logger = logging.getLogger("external_media")

Prober = Callable[..., ImageMetadata]


def validate_url(
    url: str,
    admission: AdmissionPolicy,
    probe: ProbePolicy,
    prober: Optional[Prober] = None,
) -> ValidationOutcome:
    """Admit then probe a single URL, turning any failure into a ``Rejected``."""
    prober = prober or probe_image
    try:
        normalized = admit(url, admission)
        metadata = prober(normalized, probe, admission=admission)
    except ValidationError as exc:
        logger.warning("Rejected %s (%s): %s", url, exc.reason.value, exc)
        return Rejected(url=url, reason=exc.reason)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Unexpected error probing %s", url)
        return Rejected(url=url, reason=ReasonCode.NETWORK_UNREACHABLE)
    logger.info(
        "Accepted %s (%dx%d %s)", url, metadata.width, metadata.height, metadata.mime_type
    )
    return Accepted(url=url, metadata=metadata)


async def process_batch(
    urls: Sequence[str],
    admission: Optional[AdmissionPolicy] = None,
    probe: Optional[ProbePolicy] = None,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    prober: Optional[Prober] = None,
) -> BatchResult:
    """Validate every URL and return outcomes partitioned in input order.

    Each URL is admitted and probed on a worker thread, with at most
    ``max_concurrency`` probes in flight. Outcomes are reassembled by input
    position, so completion order never affects the result. Cancelling the
    awaiting task abandons in-flight probes without waiting for them.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")
    admission = admission or AdmissionPolicy()
    probe = probe or ProbePolicy()
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(url: str) -> ValidationOutcome:
        async with semaphore:
            return await asyncio.to_thread(validate_url, url, admission, probe, prober)

    started = time.perf_counter()
    outcomes: List[ValidationOutcome] = list(
        await asyncio.gather(*(run_one(url) for url in urls))
    )
    result = BatchResult.from_outcomes(outcomes)
    logger.info(
        "Batch finished in %.2fs (%d/%d accepted, %d rejected)",
        time.perf_counter() - started,
        len(result.successful),
        len(urls),
        len(result.failed),
    )
    return result


def process_batch_sync(
    urls: Sequence[str],
    admission: Optional[AdmissionPolicy] = None,
    probe: Optional[ProbePolicy] = None,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    prober: Optional[Prober] = None,
) -> BatchResult:
    """Blocking wrapper around :func:`process_batch` for callers without a loop."""
    return asyncio.run(
        process_batch(
            urls, admission, probe, max_concurrency=max_concurrency, prober=prober
        )
    )
