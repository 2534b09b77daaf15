"""Inbound webhook ingestion: mapping external payloads onto internal records."""

from .ingestion import (
    HttpSubmissionSink,
    InboundIngestor,
    IngestResult,
    InMemorySubmissionSink,
    SubmissionSink,
    apply_mapping_rules,
)

__all__ = [
    "HttpSubmissionSink",
    "InMemorySubmissionSink",
    "InboundIngestor",
    "IngestResult",
    "SubmissionSink",
    "apply_mapping_rules",
]
