"""Caller-facing entry point that turns a form submission into a JSON envelope."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .attachments import CreateRecord, register_attachments
from .batch import process_batch
from .config import DEFAULT_MAX_CONCURRENCY, AdmissionPolicy, ProbePolicy
from .models import ReasonCode, Rejected
from .utils import split_urls

logger = logging.getLogger("external_media")

INVALID_TOKEN_MESSAGE = "Invalid security token."
FORBIDDEN_MESSAGE = "Insufficient permissions."
NO_URLS_MESSAGE = "No valid URLs provided."


def _error(message: str) -> Dict[str, Any]:
    return {"success": False, "data": message}


async def handle_submission(
    raw_text: str,
    *,
    can_upload: bool,
    token_valid: bool,
    admission: Optional[AdmissionPolicy] = None,
    probe: Optional[ProbePolicy] = None,
    create_record: Optional[CreateRecord] = None,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> Dict[str, Any]:
    """Validate the URLs in ``raw_text`` on behalf of an authorized caller.

    ``token_valid`` and ``can_upload`` are the results of the host
    application's anti-forgery and capability checks. When ``create_record``
    is given, each accepted URL is passed to it and the returned identifier is
    reported as ``attachment_id``.
    """
    if not token_valid:
        return _error(INVALID_TOKEN_MESSAGE)
    if not can_upload:
        return _error(FORBIDDEN_MESSAGE)

    urls = split_urls(raw_text or "")
    if not urls:
        return _error(NO_URLS_MESSAGE)

    result = await process_batch(
        urls, admission, probe, max_concurrency=max_concurrency
    )
    data = result.to_dict()
    if create_record is None:
        return {"success": True, "data": data}

    report = register_attachments(result, create_record)
    ids = {item.url: item.attachment_id for item in report.registered}
    data["successful"] = [
        {**entry, "attachment_id": ids[entry["url"]]}
        for entry in data["successful"]
        if entry["url"] in ids
    ]
    failures = {entry["url"]: entry for entry in data["failed"]}
    failures.update(
        (url, Rejected(url, ReasonCode.RECORD_CREATION_FAILED).to_dict())
        for url in report.failed
    )
    data["failed"] = [failures[url] for url in urls if url in failures]
    logger.info(
        "Registered %d of %d accepted URLs", len(report.registered), len(result.successful)
    )
    return {"success": True, "data": data}
