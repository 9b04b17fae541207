"""Tests for Bundle pagination over Patient/$everything."""

import json
from typing import List

import httpx
import pytest

from fhir_documents.core.exceptions import (
    InfrastructureError,
    ProtocolViolationError,
    TransientError,
    ValidationError,
)
from fhir_documents.healthcare.bundle_paginator import BundlePaginator
from fhir_documents.utils.retry import ExponentialBackoffRetryPolicy
from tests.helpers import BASE_URL, bundle, document_reference

PAGE_2 = f"{BASE_URL}/Patient/p1/$everything?_type=DocumentReference&_page=opaque-2"
PAGE_3 = "https://healthlake.us-east-1.amazonaws.com/continuation?token=abc-def"


class RecordingLimiter:
    """Rate limiter double counting acquisitions."""

    def __init__(self) -> None:
        self.acquired = 0

    async def acquire(self) -> None:
        self.acquired += 1


def serve(pages: dict, requests: List[str]):
    """Handler answering each URL with its canned page."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requests.append(url)
        status, body = pages[url]
        return httpx.Response(status, json=body)

    return handler


def initial_url(patient_id: str = "p1") -> str:
    return f"{BASE_URL}/Patient/{patient_id}/$everything?_type=DocumentReference"


@pytest.mark.asyncio
async def test_fetch_all_follows_next_links_in_order(make_http):
    """Three pages are concatenated in page order and no fourth request is made."""
    requests: List[str] = []
    pages = {
        initial_url(): (
            200,
            bundle([document_reference("d1"), document_reference("d2")], PAGE_2, total=99),
        ),
        PAGE_2: (200, bundle([document_reference("d3")], PAGE_3)),
        PAGE_3: (200, bundle([document_reference("d4")])),
    }
    limiter = RecordingLimiter()
    paginator = BundlePaginator(make_http(serve(pages, requests)), rate_limiter=limiter)

    documents = await paginator.fetch_all("p1")

    assert [d.id for d in documents] == ["d1", "d2", "d3", "d4"]
    assert requests == [initial_url(), PAGE_2, PAGE_3]
    assert limiter.acquired == 3


@pytest.mark.asyncio
async def test_total_does_not_end_pagination_early(make_http):
    """A total smaller than the collected count is ignored."""
    requests: List[str] = []
    pages = {
        initial_url(): (200, bundle([document_reference("d1")], PAGE_2, total=1)),
        PAGE_2: (200, bundle([document_reference("d2")], total=1)),
    }
    paginator = BundlePaginator(make_http(serve(pages, requests)))

    documents = await paginator.fetch_all("p1")

    assert [d.id for d in documents] == ["d1", "d2"]
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_non_searchset_page_is_protocol_violation(make_http):
    """A later page with the wrong Bundle type aborts the whole walk."""
    requests: List[str] = []
    pages = {
        initial_url(): (200, bundle([document_reference("d1")], PAGE_2)),
        PAGE_2: (200, bundle([document_reference("d2")], bundle_type="collection")),
    }
    paginator = BundlePaginator(make_http(serve(pages, requests)))

    with pytest.raises(ProtocolViolationError):
        await paginator.fetch_all("p1")


@pytest.mark.asyncio
async def test_non_bundle_body_is_protocol_violation(make_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"resourceType": "OperationOutcome"})

    paginator = BundlePaginator(make_http(handler))

    with pytest.raises(ProtocolViolationError):
        await paginator.fetch_all("p1")


@pytest.mark.asyncio
async def test_unparseable_body_is_protocol_violation(make_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    paginator = BundlePaginator(make_http(handler))

    with pytest.raises(ProtocolViolationError):
        await paginator.fetch_all("p1")


@pytest.mark.asyncio
async def test_only_document_references_with_ids_are_collected(make_http):
    page = bundle(
        [
            document_reference("d1"),
            {"resourceType": "Patient", "id": "p1"},
            {"resourceType": "DocumentReference", "status": "current"},
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=page)

    paginator = BundlePaginator(make_http(handler))

    documents = await paginator.fetch_all("p1")

    assert [d.id for d in documents] == ["d1"]


@pytest.mark.asyncio
async def test_throttled_page_is_retried(make_http):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(str(request.url))
        if len(attempts) < 3:
            return httpx.Response(429, json={})
        return httpx.Response(200, json=bundle([document_reference("d1")]))

    async def no_sleep(_: float) -> None:
        return None

    policy = ExponentialBackoffRetryPolicy(
        max_retries=3, base_delay=0.0, jitter=False, sleep=no_sleep
    )
    paginator = BundlePaginator(make_http(handler), retry_policy=policy)

    documents = await paginator.fetch_all("p1")

    assert [d.id for d in documents] == ["d1"]
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_server_error_without_retries_is_transient(make_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={})

    paginator = BundlePaginator(make_http(handler))

    with pytest.raises(TransientError):
        await paginator.fetch_all("p1")


@pytest.mark.asyncio
async def test_forbidden_is_infrastructure_error(make_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={})

    paginator = BundlePaginator(make_http(handler))

    with pytest.raises(InfrastructureError):
        await paginator.fetch_all("p1")


@pytest.mark.asyncio
async def test_blank_patient_id_is_rejected_without_requests(make_http):
    requests: List[str] = []
    paginator = BundlePaginator(make_http(serve({}, requests)))

    with pytest.raises(ValidationError):
        await paginator.fetch_all("  ")
    assert requests == []


@pytest.mark.asyncio
async def test_requests_ask_for_fhir_json(make_http):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, content=json.dumps(bundle([])).encode())

    paginator = BundlePaginator(make_http(handler))

    assert await paginator.fetch_all("p1") == []
    assert seen["accept"] == "application/fhir+json"
