"""Signed HTTP access to an AWS HealthLake FHIR datastore.

Requests are signed with AWS Signature V4 for the ``healthlake`` service and
sent with httpx. Status codes are translated into the archive error taxonomy
so that callers and the retry policy only deal with categorized errors.
"""

from typing import Dict, Optional

import boto3
import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest

from fhir_documents.config import Settings
from fhir_documents.core.exceptions import (
    DocumentArchiveError,
    InfrastructureError,
    NotFoundError,
    TransientError,
)
from fhir_documents.utils.correlation import get_correlation_id
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

FHIR_JSON = "application/fhir+json"


def error_for_status(
    response: httpx.Response, url: str
) -> Optional[DocumentArchiveError]:
    """Translate a non-success response into a categorized error.

    Returns:
        None for 2xx responses, otherwise the matching error
    """
    status = response.status_code
    if 200 <= status < 300:
        return None
    if status == 404:
        return NotFoundError(f"Resource not found: {url}")
    if status == 429 or status >= 500:
        return TransientError(
            f"HealthLake returned {status} for {url}", status_code=status
        )
    return InfrastructureError(
        f"HealthLake returned {status} for {url}", status_code=status
    )


class HealthLakeHttpClient:
    """Async HTTP client for HealthLake FHIR reads."""

    def __init__(
        self,
        base_url: str,
        region: str,
        session: Optional[boto3.Session] = None,
        timeout: float = 30.0,
        sign_requests: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize HealthLake client.

        Args:
            base_url: FHIR base URL of the datastore
            region: AWS region used for signing
            session: boto3 session supplying credentials
            timeout: Request timeout in seconds
            sign_requests: Whether to apply SigV4 signatures
            transport: Custom httpx transport, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.region = region
        self.timeout = timeout
        self.sign_requests = sign_requests
        self._session = session or (boto3.Session() if sign_requests else None)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "HealthLakeHttpClient":
        """Build a client from application settings."""
        session = boto3.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            aws_session_token=settings.aws_session_token,
            region_name=settings.aws_region,
        )
        return cls(
            base_url=settings.fhir_base_url,
            region=settings.aws_region,
            session=session,
            timeout=settings.http_timeout_seconds,
        )

    def url_for(self, path: str) -> str:
        """Absolute URL for a path relative to the FHIR base."""
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HealthLakeHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _sign_request(
        self, method: str, url: str, headers: Dict[str, str]
    ) -> Dict[str, str]:
        """Sign request with AWS Signature V4."""
        request = AWSRequest(method=method, url=url, headers=headers)

        credentials = self._session.get_credentials() if self._session else None
        if credentials is None:
            raise InfrastructureError("No AWS credentials available to sign request")
        SigV4Auth(credentials, "healthlake", self.region).add_auth(request)

        return dict(request.headers)

    async def get(self, url: str) -> httpx.Response:
        """Send a signed GET for an absolute URL.

        Network failures and timeouts are raised as ``TransientError``; the
        response is returned as-is otherwise so callers can inspect the status.
        """
        headers = {"Accept": FHIR_JSON}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        if self.sign_requests:
            headers = self._sign_request("GET", url, headers)

        client = await self._get_client()
        try:
            response = await client.get(url, headers=headers)
        except httpx.TransportError as e:
            raise TransientError(f"Request to {url} failed: {e}") from e

        logger.debug("healthlake_response", url=url, status_code=response.status_code)
        return response
