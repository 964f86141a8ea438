"""Hand accepted outcomes to the collaborator that persists media records."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .errors import RecordCreationError
from .models import Accepted, AttachmentRequest, BatchResult
from .utils import slugify, url_filename

logger = logging.getLogger("external_media")

CreateRecord = Callable[[AttachmentRequest], Optional[Any]]


@dataclass
class RegisteredAttachment:
    """An accepted URL together with the identifier of its stored record."""

    url: str
    attachment_id: Any

    def to_dict(self) -> dict:
        return {"url": self.url, "attachment_id": self.attachment_id}


@dataclass
class RegistrationReport:
    registered: List[RegisteredAttachment] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def build_attachment_request(outcome: Accepted) -> AttachmentRequest:
    """Derive the record payload, including a title from the URL's file name."""
    filename = url_filename(outcome.url)
    stem, _ = posixpath.splitext(filename)
    return AttachmentRequest(
        source_url=outcome.url,
        width=outcome.metadata.width,
        height=outcome.metadata.height,
        mime_type=outcome.metadata.mime_type,
        title=slugify(stem or filename),
        filename=filename,
    )


def register_attachments(
    result: BatchResult, create_record: CreateRecord
) -> RegistrationReport:
    """Call ``create_record`` for each accepted URL, in order.

    A falsy return value or any exception from the collaborator marks the
    URL as failed; the remaining URLs are still registered.
    """
    report = RegistrationReport()
    for outcome in result.successful:
        request = build_attachment_request(outcome)
        try:
            attachment_id = create_record(request)
        except RecordCreationError as exc:
            logger.warning("Could not create a record for %s: %s", outcome.url, exc)
            report.failed.append(outcome.url)
            continue
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error creating a record for %s", outcome.url)
            report.failed.append(outcome.url)
            continue
        if not attachment_id:
            logger.warning("Record creation returned nothing for %s", outcome.url)
            report.failed.append(outcome.url)
            continue
        report.registered.append(RegisteredAttachment(outcome.url, attachment_id))
    return report
