"""Name-match audit trail.

Non-exact name matches are appended to an audit sink so reviewers can see
which rule accepted a recipient. Appending is fire-and-forget: a failing sink
is logged and never fails verification.
"""

import logging
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class NameMatchAudit(BaseModel):
    """One audited name match, keyed by tenant and record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime
    record_id: UUID
    tenant_id: str = "default"
    extracted: str
    expected: list[str]
    match_type: str
    confidence: int
    reason: str
    verification_result: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AuditSink(Protocol):
    """Destination for audit records (database collection, queue, log)."""

    def append(self, record: NameMatchAudit) -> None: ...


class LoggingAuditSink:
    """Audit sink that writes records to the application log."""

    def append(self, record: NameMatchAudit) -> None:
        logger.info(
            f"Name match audit logged | Record: {record.record_id} | "
            f"Confidence: {record.confidence}% | Type: {record.match_type}"
        )


def append_audit(sink: AuditSink, record: NameMatchAudit) -> bool:
    """Append to ``sink``, logging instead of raising on failure.

    Returns:
        True if the sink accepted the record
    """
    try:
        sink.append(record)
        return True
    except Exception as e:
        logger.error(f"Failed to log name match audit for record {record.record_id}: {e}")
        return False
