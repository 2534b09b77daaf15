"""Inbound webhook ingestion.

External systems POST arbitrary JSON objects to /webhook/inbound/{mapping_id}.
The mapping's rules rename external field names to internal field ids and
the resulting record is handed to the record-submission pipeline.

Processing stops at the first failing step, in this order:
lookup, enabled check, shared secret, body parsing, mapping, submission.
"""

from __future__ import annotations

import hmac
import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from courier.exceptions import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from courier.logging import get_logger
from courier.models import generate_id

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.storage import MappingStore

logger = get_logger(__name__)


def apply_mapping_rules(rules: Mapping[str, str], body: Mapping[str, Any]) -> dict[str, Any]:
    """Rename external fields to internal field ids.

    Unmapped external keys are dropped and rules whose external key is absent
    produce nothing. When two rules target the same internal field, the later
    rule wins if both keys are present. Neither argument is modified.

    Example:
        >>> apply_mapping_rules({"email_address": "f_email"}, {"email_address": "a@b.c", "x": 1})
        {'f_email': 'a@b.c'}
    """
    record: dict[str, Any] = {}
    for external, internal in rules.items():
        if external in body:
            record[internal] = body[external]
    return record


class IngestResult(BaseModel):
    """Outcome of an accepted inbound request."""

    model_config = ConfigDict(extra="forbid")

    submission_id: str
    mapping_id: str
    record_type_id: str
    fields_mapped: int = Field(ge=0)


@runtime_checkable
class SubmissionSink(Protocol):
    """Record-submission pipeline receiving mapped inbound records."""

    async def submit(self, record_type_id: str, record: dict[str, Any]) -> str:
        """Submit a record and return its submission id."""
        ...


class InMemorySubmissionSink:
    """Keeps submitted records in memory. For development and tests."""

    def __init__(self) -> None:
        self.submissions: list[tuple[str, str, dict[str, Any]]] = []

    async def submit(self, record_type_id: str, record: dict[str, Any]) -> str:
        submission_id = generate_id("sub")
        self.submissions.append((submission_id, record_type_id, dict(record)))
        return submission_id


class HttpSubmissionSink:
    """Forwards mapped records to the submission pipeline over HTTP.

    POSTs {"recordTypeId": ..., "data": {...}} and reads "submissionId" from
    the JSON response.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def submit(self, record_type_id: str, record: dict[str, Any]) -> str:
        """Submit one record.

        Raises:
            UpstreamError: On transport failure, a non-2xx response (4xx map to
                422, everything else to 502) or a response without submissionId.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._url,
                    json={"recordTypeId": record_type_id, "data": record},
                )
        except httpx.TimeoutException as e:
            raise UpstreamError("submission pipeline timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"submission pipeline unreachable: {e}") from e

        if not response.is_success:
            status = 422 if 400 <= response.status_code < 500 else 502
            raise UpstreamError(
                f"submission rejected: HTTP {response.status_code} {response.text[:200]}",
                status_code=status,
            )

        try:
            submission_id = response.json().get("submissionId")
        except (ValueError, AttributeError) as e:
            raise UpstreamError("submission pipeline returned malformed JSON") from e
        if not submission_id:
            raise UpstreamError("submission pipeline response has no submissionId")
        return str(submission_id)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class InboundIngestor:
    """Authenticates, maps and forwards inbound webhook requests.

    Example:
        ```python
        ingestor = InboundIngestor(storage, InMemorySubmissionSink(), settings)
        result = await ingestor.ingest("inb_abc", {"X-Inbound-Secret": secret}, raw_body)
        print(result.submission_id)
        ```
    """

    def __init__(self, mappings: MappingStore, sink: SubmissionSink, settings: Settings) -> None:
        self._mappings = mappings
        self._sink = sink
        self._secret_header = settings.inbound_secret_header
        self._max_body_bytes = settings.inbound_max_body_bytes

    async def ingest(
        self,
        mapping_id: str,
        headers: Mapping[str, str],
        raw_body: bytes | str,
    ) -> IngestResult:
        """Process one inbound request.

        Args:
            mapping_id: Public endpoint token from the URL.
            headers: Request headers (matched case-insensitively).
            raw_body: Raw request body.

        Returns:
            IngestResult with the submission id.

        Raises:
            NotFoundError: Unknown mapping.
            ForbiddenError: Mapping disabled.
            AuthenticationError: Missing or wrong shared secret.
            ValidationError: Oversized, malformed or non-object body.
            UpstreamError: The submission sink failed.
        """
        mapping = await self._mappings.get_mapping(mapping_id)
        if mapping is None:
            raise NotFoundError("inbound_mapping", mapping_id)
        if not mapping.enabled:
            raise ForbiddenError(f"inbound mapping {mapping_id} is disabled")

        if mapping.secret is not None:
            provided = _header(headers, self._secret_header)
            if provided is None or not hmac.compare_digest(
                provided.encode("utf-8"), mapping.secret.encode("utf-8")
            ):
                logger.warning("Inbound secret rejected", mapping_id=mapping_id)
                raise AuthenticationError("invalid or missing secret")

        body = self._parse_body(raw_body)
        record = apply_mapping_rules(mapping.mapping_rules, body)

        try:
            submission_id = await self._sink.submit(mapping.target_record_type_id, record)
        except UpstreamError:
            logger.warning("Inbound submission rejected", mapping_id=mapping_id)
            raise
        except Exception as e:
            logger.exception("Inbound submission failed", mapping_id=mapping_id)
            raise UpstreamError(str(e) or type(e).__name__) from e

        logger.info(
            "Inbound record submitted",
            mapping_id=mapping_id,
            record_type_id=mapping.target_record_type_id,
            submission_id=submission_id,
            fields_mapped=len(record),
            fields_received=len(body),
        )
        return IngestResult(
            submission_id=submission_id,
            mapping_id=mapping_id,
            record_type_id=mapping.target_record_type_id,
            fields_mapped=len(record),
        )

    def _parse_body(self, raw_body: bytes | str) -> dict[str, Any]:
        data = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        if len(data) > self._max_body_bytes:
            raise ValidationError("body", f"body exceeds {self._max_body_bytes} bytes")
        try:
            body = json.loads(data)
        except (UnicodeDecodeError, ValueError) as e:
            raise ValidationError("body", "body is not valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationError("body", "body must be a JSON object")
        return body


__all__ = [
    "HttpSubmissionSink",
    "InMemorySubmissionSink",
    "InboundIngestor",
    "IngestResult",
    "SubmissionSink",
    "apply_mapping_rules",
]
