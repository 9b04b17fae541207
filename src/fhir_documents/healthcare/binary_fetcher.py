"""Retrieval of FHIR Binary resources from HealthLake."""

import json
from email.message import Message
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from fhir_documents.core.exceptions import (
    InvalidContentError,
    MalformedContentError,
    NotFoundError,
    ValidationError,
)
from fhir_documents.healthcare import content_decoder
from fhir_documents.healthcare.healthlake_http import (
    HealthLakeHttpClient,
    error_for_status,
)
from fhir_documents.healthcare.models import BinaryPayload, BinaryResource
from fhir_documents.healthcare.not_found_tracker import NotFoundTracker
from fhir_documents.utils.logging import get_logger
from fhir_documents.utils.rate_limiter import NoopRateLimiter, RateLimiter
from fhir_documents.utils.retry import NoRetryPolicy, RetryPolicy

logger = get_logger(__name__)


def filename_from_headers(headers: httpx.Headers) -> Optional[str]:
    """Extract the file name from a Content-Disposition header, if present."""
    disposition = headers.get("content-disposition")
    if not disposition:
        return None
    message = Message()
    message["content-disposition"] = disposition
    return message.get_filename()


class BinaryFetcher:
    """Fetches ``Binary/{id}`` and returns the decoded payload.

    A 404 is written to the ``NotFoundTracker`` before ``NotFoundError`` is
    raised. Throttling and server errors raise ``TransientError`` and are
    retried by the retry policy; unusable bodies raise ``InvalidContentError``
    and are not.
    """

    def __init__(
        self,
        http: HealthLakeHttpClient,
        not_found_tracker: NotFoundTracker,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the fetcher.

        Args:
            http: Signed HealthLake client
            not_found_tracker: Sink for missing Binaries
            rate_limiter: Limiter consulted before every request
            retry_policy: Policy wrapping every HTTP call
        """
        self.http = http
        self.not_found_tracker = not_found_tracker
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.retry_policy = retry_policy or NoRetryPolicy()

    def binary_url(self, binary_id: str) -> str:
        return self.http.url_for(f"Binary/{binary_id}")

    async def fetch(
        self,
        binary_id: str,
        patient_id: Optional[str] = None,
        document_reference_id: Optional[str] = None,
    ) -> BinaryPayload:
        """Fetch and decode a Binary.

        Args:
            binary_id: Id of the Binary resource
            patient_id: Patient recorded if the Binary is missing
            document_reference_id: DocumentReference recorded if the Binary is missing

        Returns:
            Decoded payload whose size is the decoded byte count

        Raises:
            ValidationError: If the binary id is blank
            NotFoundError: If HealthLake returns 404
            TransientError: If throttling or server errors outlast the retries
            InvalidContentError: If the body is not a usable Binary
        """
        if not binary_id or not binary_id.strip():
            raise ValidationError("Binary ID cannot be null or empty")

        url = self.binary_url(binary_id)

        async def request() -> httpx.Response:
            await self.rate_limiter.acquire()
            response = await self.http.get(url)
            error = error_for_status(response, url)
            if isinstance(error, NotFoundError):
                await self.not_found_tracker.record(
                    binary_id,
                    url,
                    patient_id=patient_id,
                    document_reference_id=document_reference_id,
                )
                raise NotFoundError(
                    f"Binary {binary_id} not found", resource_id=binary_id
                )
            if error is not None:
                raise error
            return response

        response = await self.retry_policy.execute(
            request, operation_name="fetch_binary"
        )
        payload = self._parse(response, binary_id)

        logger.info(
            "binary_fetched",
            binary_id=binary_id,
            content_type=payload.content_type,
            size=payload.size,
        )
        return payload

    def _parse(self, response: httpx.Response, binary_id: str) -> BinaryPayload:
        try:
            binary = BinaryResource.model_validate(response.json())
        except (json.JSONDecodeError, ValueError, PydanticValidationError) as e:
            raise InvalidContentError(
                f"Binary {binary_id} response is not valid FHIR JSON: {e}"
            ) from e

        if binary.resource_type != "Binary":
            raise InvalidContentError(
                f"Expected resourceType 'Binary' for {binary_id}, "
                f"got {binary.resource_type!r}"
            )
        if not binary.data:
            raise InvalidContentError(f"Binary {binary_id} has no data")

        try:
            data = content_decoder.decode(binary.data)
        except MalformedContentError as e:
            raise MalformedContentError(
                f"Binary {binary_id} carries malformed base64: {e.message}"
            ) from e

        return BinaryPayload(
            data=data,
            content_type=binary.content_type,
            filename=filename_from_headers(response.headers),
        )
