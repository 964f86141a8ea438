"""Data models passed between the admission, probe, and batch stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Union


class ReasonCode(str, Enum):
    """Machine-readable reason attached to a rejected URL."""

    MALFORMED_URL = "MalformedURL"
    UNSUPPORTED_SCHEME = "UnsupportedScheme"
    BLOCKED_HOST = "BlockedHost"
    NETWORK_UNREACHABLE = "NetworkUnreachable"
    DISALLOWED_TYPE = "DisallowedType"
    TOO_LARGE = "TooLarge"
    INVALID_IMAGE_DATA = "InvalidImageData"
    RECORD_CREATION_FAILED = "RecordCreationFailed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ImageMetadata:
    """Intrinsic properties confirmed by the structural probe."""

    width: int
    height: int
    mime_type: str

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Image dimensions must be positive, got {self.width}x{self.height}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"width": self.width, "height": self.height, "mime_type": self.mime_type}


@dataclass(frozen=True)
class Accepted:
    """A URL that passed admission and the probe."""

    url: str
    metadata: ImageMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "metadata": self.metadata.to_dict()}


@dataclass(frozen=True)
class Rejected:
    """A URL that failed one of the pipeline checks."""

    url: str
    reason: ReasonCode

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "reason": self.reason.value}


ValidationOutcome = Union[Accepted, Rejected]


@dataclass
class BatchResult:
    """Outcomes of a batch partitioned into accepted and rejected URLs."""

    successful: List[Accepted] = field(default_factory=list)
    failed: List[Rejected] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: List[ValidationOutcome]) -> "BatchResult":
        """Partition outcomes, keeping their relative order within each list."""
        result = cls()
        for outcome in outcomes:
            if isinstance(outcome, Accepted):
                result.successful.append(outcome)
            else:
                result.failed.append(outcome)
        return result

    def __len__(self) -> int:
        return len(self.successful) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": [outcome.to_dict() for outcome in self.successful],
            "failed": [outcome.to_dict() for outcome in self.failed],
        }


@dataclass(frozen=True)
class AttachmentRequest:
    """Payload handed to the collaborator that persists a media record."""

    source_url: str
    width: int
    height: int
    mime_type: str
    title: str
    filename: str
