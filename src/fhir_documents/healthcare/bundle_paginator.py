"""Pagination over ``Patient/{id}/$everything`` for DocumentReference resources."""

import json
from typing import AsyncIterator, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from fhir_documents.core.exceptions import (
    InfrastructureError,
    NotFoundError,
    ProtocolViolationError,
    ValidationError,
)
from fhir_documents.healthcare.healthlake_http import (
    HealthLakeHttpClient,
    error_for_status,
)
from fhir_documents.healthcare.models import Bundle, DocumentReference
from fhir_documents.utils.logging import get_logger
from fhir_documents.utils.rate_limiter import NoopRateLimiter, RateLimiter
from fhir_documents.utils.retry import NoRetryPolicy, RetryPolicy

logger = get_logger(__name__)


class BundlePaginator:
    """Collects a patient's DocumentReferences across every Bundle page.

    Pages are fetched strictly one after another. Continuation URLs from the
    ``next`` link are followed verbatim, and the Bundle ``total`` is only
    logged; the walk ends when a page carries no ``next`` link.
    """

    def __init__(
        self,
        http: HealthLakeHttpClient,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the paginator.

        Args:
            http: Signed HealthLake client
            rate_limiter: Limiter consulted before every request
            retry_policy: Policy wrapping every HTTP call
        """
        self.http = http
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.retry_policy = retry_policy or NoRetryPolicy()

    def initial_url(self, patient_id: str) -> str:
        return self.http.url_for(
            f"Patient/{patient_id}/$everything?_type=DocumentReference"
        )

    async def _fetch_page(self, url: str) -> Bundle:
        async def request() -> httpx.Response:
            await self.rate_limiter.acquire()
            response = await self.http.get(url)
            error = error_for_status(response, url)
            if isinstance(error, NotFoundError):
                raise InfrastructureError(error.message, status_code=404)
            if error is not None:
                raise error
            return response

        response = await self.retry_policy.execute(
            request, operation_name="fetch_bundle"
        )
        try:
            return Bundle.model_validate(response.json())
        except (json.JSONDecodeError, ValueError, PydanticValidationError) as e:
            raise ProtocolViolationError(
                f"Response from {url} is not a FHIR Bundle: {e}"
            ) from e

    async def iter_pages(self, patient_id: str) -> AsyncIterator[Bundle]:
        """Yield every validated searchset Bundle page in order.

        Raises:
            ValidationError: If the patient id is blank
            ProtocolViolationError: If a page is not a searchset Bundle
        """
        if not patient_id or not patient_id.strip():
            raise ValidationError("Patient ID cannot be null or empty")

        url: Optional[str] = self.initial_url(patient_id)
        page_number = 0
        while url:
            page_number += 1
            bundle = await self._fetch_page(url)
            if not bundle.is_searchset():
                raise ProtocolViolationError(
                    f"Expected searchset Bundle on page {page_number}, "
                    f"got resourceType={bundle.resource_type!r} type={bundle.type!r}"
                )
            logger.info(
                "bundle_page_fetched",
                patient_id=patient_id,
                page=page_number,
                entries=len(bundle.entry),
                total=bundle.total,
            )
            yield bundle
            url = bundle.next_link()

    async def fetch_all(self, patient_id: str) -> List[DocumentReference]:
        """Fetch every DocumentReference for the patient, in page order."""
        documents: List[DocumentReference] = []
        pages = 0
        async for bundle in self.iter_pages(patient_id):
            pages += 1
            documents.extend(bundle.document_references())

        logger.info(
            "document_references_collected",
            patient_id=patient_id,
            pages=pages,
            document_references=len(documents),
        )
        return documents
