"""Whole-patient document archival.

Discovers a patient's DocumentReferences, then fetches, decodes and uploads
every attachment as an independent unit of work under a shared concurrency
gate. Per-attachment failures are returned as ``FailureRecord`` values next to
the successes; validation errors and protocol violations abort the run.

Note: Handles PHI. Document content is never logged.
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from fhir_documents.config import Settings
from fhir_documents.core.exceptions import (
    DocumentArchiveError,
    ErrorKind,
    FailureRecord,
    InfrastructureError,
    InvalidContentError,
    ProtocolViolationError,
    ValidationError,
)
from fhir_documents.healthcare import content_decoder
from fhir_documents.healthcare.binary_fetcher import BinaryFetcher
from fhir_documents.healthcare.bundle_paginator import BundlePaginator
from fhir_documents.healthcare.file_organization import FileOrganizer
from fhir_documents.healthcare.healthlake_http import HealthLakeHttpClient
from fhir_documents.healthcare.metadata_extractor import MetadataExtractor
from fhir_documents.healthcare.models import (
    Attachment,
    BinaryPayload,
    DocumentReference,
    PracticeInfo,
)
from fhir_documents.healthcare.not_found_tracker import NotFoundTracker
from fhir_documents.storage.base import BlobStore, UploadResult
from fhir_documents.storage.s3_backend import S3BlobStore
from fhir_documents.utils.concurrency import ConcurrencyGate
from fhir_documents.utils.correlation import correlation_scope, get_correlation_id
from fhir_documents.utils.logging import get_logger
from fhir_documents.utils.rate_limiter import TokenBucketRateLimiter
from fhir_documents.utils.retry import ExponentialBackoffRetryPolicy

logger = get_logger(__name__)

NO_CONTENT_MESSAGE = "Attachment has neither embedded data nor URL reference"


@dataclass(frozen=True)
class ArchiveDestination:
    """Where archived documents are written."""

    bucket: str
    key_prefix: Optional[str] = None


@dataclass(frozen=True)
class ArchivedDocument:
    """A successfully archived attachment."""

    upload: UploadResult
    document_reference_id: str
    attachment_index: int
    is_embedded: bool
    binary_id: Optional[str] = None
    filename: Optional[str] = None


ArchiveOutcome = Union[ArchivedDocument, FailureRecord]


@dataclass
class ArchiveSummary:
    """Aggregate view over the outcomes of one archive run."""

    succeeded: int = 0
    failed: int = 0
    total_bytes: int = 0
    used_multipart: int = 0
    failures_by_kind: Dict[ErrorKind, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


def summarize(outcomes: Sequence[ArchiveOutcome]) -> ArchiveSummary:
    """Count successes, failures and archived bytes."""
    summary = ArchiveSummary()
    kinds: Counter = Counter()
    for outcome in outcomes:
        if isinstance(outcome, FailureRecord):
            summary.failed += 1
            kinds[outcome.kind] += 1
        else:
            summary.succeeded += 1
            summary.total_bytes += outcome.upload.size
            summary.used_multipart += int(outcome.upload.used_multipart)
    summary.failures_by_kind = dict(kinds)
    return summary


@dataclass(frozen=True)
class _Unit:
    document: DocumentReference
    index: int
    attachment: Attachment


class DocumentDownloadService:
    """Archives every document attachment of a patient to blob storage."""

    def __init__(
        self,
        paginator: BundlePaginator,
        fetcher: BinaryFetcher,
        blob_store: BlobStore,
        gate: Optional[ConcurrencyGate] = None,
        file_organizer: Optional[FileOrganizer] = None,
        metadata_extractor: Optional[MetadataExtractor] = None,
    ):
        """Initialize the service.

        Args:
            paginator: Source of the patient's DocumentReferences
            fetcher: Binary retrieval
            blob_store: Destination storage
            gate: Concurrency gate shared by all units, 10 slots by default
            file_organizer: File name and key builder
            metadata_extractor: Tag builder
        """
        self.paginator = paginator
        self.fetcher = fetcher
        self.blob_store = blob_store
        self.gate = gate or ConcurrencyGate(10)
        self.file_organizer = file_organizer or FileOrganizer()
        self.metadata_extractor = metadata_extractor or MetadataExtractor()

    async def close(self) -> None:
        """Release the HTTP connections of the HealthLake client."""
        await self.paginator.http.close()
        if self.fetcher.http is not self.paginator.http:
            await self.fetcher.http.close()

    async def discover(
        self, patient_id: str, document_reference_id: Optional[str] = None
    ) -> List[DocumentReference]:
        """Collect the patient's DocumentReferences, optionally just one of them.

        Raises:
            ValidationError: If the patient id is blank
            ProtocolViolationError: If any page is not a searchset Bundle
        """
        documents = await self.paginator.fetch_all(patient_id)
        if document_reference_id:
            documents = [d for d in documents if d.id == document_reference_id]
            if not documents:
                logger.warning(
                    "document_reference_not_in_bundle",
                    patient_id=patient_id,
                    document_reference_id=document_reference_id,
                )
        return documents

    async def archive_patient_documents(
        self,
        patient_id: str,
        destination: ArchiveDestination,
        document_reference_id: Optional[str] = None,
        practice_id: Optional[str] = None,
    ) -> List[ArchiveOutcome]:
        """Archive every attachment of the patient's documents.

        Args:
            patient_id: Patient whose documents are archived
            destination: Target bucket and key prefix
            document_reference_id: Restrict the run to one DocumentReference
            practice_id: Practice id overriding the one on each document

        Returns:
            Successes and failure records in completion order

        Raises:
            ValidationError: If arguments are blank
            ProtocolViolationError: If discovery returns an unexpected page;
                nothing is archived in that case
        """
        self._validate_destination(destination)
        with correlation_scope(get_correlation_id()):
            logger.info(
                "patient_archive_started",
                patient_id=patient_id,
                bucket=destination.bucket,
            )
            documents = await self.discover(patient_id, document_reference_id)
            return await self.archive_documents(
                patient_id, documents, destination, practice_id=practice_id
            )

    async def archive_documents(
        self,
        patient_id: str,
        documents: Sequence[DocumentReference],
        destination: ArchiveDestination,
        practice_id: Optional[str] = None,
    ) -> List[ArchiveOutcome]:
        """Archive the attachments of already discovered documents.

        Cancelling the caller cancels every unit; units still waiting for a
        gate slot never start.
        """
        if not patient_id or not patient_id.strip():
            raise ValidationError("Patient ID cannot be null or empty")
        self._validate_destination(destination)

        started = time.monotonic()
        outcomes: List[ArchiveOutcome] = []
        units: List[_Unit] = []

        for document in documents:
            if document.is_entered_in_error:
                logger.info(
                    "document_reference_skipped",
                    document_reference_id=document.id,
                    status=document.status,
                )
                continue
            for index, attachment in enumerate(document.attachments):
                if attachment is None:
                    logger.warning(
                        "attachment_missing",
                        document_reference_id=document.id,
                        attachment_index=index,
                    )
                    continue
                if not attachment.is_embedded and not (attachment.url or "").strip():
                    outcomes.append(
                        FailureRecord(
                            kind=ErrorKind.INVALID,
                            message=NO_CONTENT_MESSAGE,
                            document_reference_id=document.id,
                            attachment_index=index,
                        )
                    )
                    continue
                units.append(_Unit(document, index, attachment))

        tasks = [
            asyncio.create_task(
                self._run_unit(unit, patient_id, destination, practice_id)
            )
            for unit in units
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                outcomes.append(await next_done)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        summary = summarize(outcomes)
        logger.info(
            "patient_archive_completed",
            patient_id=patient_id,
            documents=len(documents),
            attachments=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            total_bytes=summary.total_bytes,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        for outcome in outcomes:
            if isinstance(outcome, FailureRecord):
                logger.warning(
                    "attachment_archive_failed",
                    document_reference_id=outcome.document_reference_id,
                    attachment_index=outcome.attachment_index,
                    binary_id=outcome.binary_id,
                    kind=outcome.kind.value,
                    error=outcome.message,
                )
        return outcomes

    @staticmethod
    def _validate_destination(destination: ArchiveDestination) -> None:
        if destination is None or not (destination.bucket or "").strip():
            raise ValidationError("Destination bucket cannot be null or empty")

    async def _run_unit(
        self,
        unit: _Unit,
        patient_id: str,
        destination: ArchiveDestination,
        practice_id: Optional[str],
    ) -> ArchiveOutcome:
        binary_id = unit.attachment.binary_id
        async with self.gate:
            try:
                return await self._archive_attachment(
                    unit, patient_id, destination, practice_id
                )
            except (ValidationError, ProtocolViolationError):
                raise
            except DocumentArchiveError as e:
                return FailureRecord.from_error(
                    e, unit.document.id, unit.index, binary_id
                )
            except Exception as e:  # pylint: disable=broad-except
                logger.exception(
                    "attachment_archive_error",
                    document_reference_id=unit.document.id,
                    attachment_index=unit.index,
                )
                return FailureRecord.from_error(
                    InfrastructureError(f"{type(e).__name__}: {e}"),
                    unit.document.id,
                    unit.index,
                    binary_id,
                )

    async def _archive_attachment(
        self,
        unit: _Unit,
        patient_id: str,
        destination: ArchiveDestination,
        practice_id: Optional[str],
    ) -> ArchivedDocument:
        document, index, attachment = unit.document, unit.index, unit.attachment

        payload: BinaryPayload
        if attachment.is_embedded:
            payload = content_decoder.decode_attachment(attachment)
            content_type = payload.content_type or attachment.content_type
            file_name = self.file_organizer.embedded_file_name(
                document.id, index, content_type
            )
        else:
            binary_id = attachment.binary_id
            if not binary_id:
                raise InvalidContentError(
                    f"Attachment URL {attachment.url!r} does not name a Binary"
                )
            payload = await self.fetcher.fetch(
                binary_id, patient_id=patient_id, document_reference_id=document.id
            )
            content_type = payload.content_type or attachment.content_type
            file_name = self.file_organizer.binary_file_name(
                document.id,
                index,
                content_type,
                original_name=attachment.title or payload.filename,
            )

        practice = document.practice_info()
        if practice_id:
            practice = PracticeInfo(
                id=practice_id, name=practice.name if practice else "practice"
            )
        key = self.file_organizer.object_key(
            practice, patient_id, file_name, key_prefix=destination.key_prefix
        )
        tags = self.metadata_extractor.extract_tags(
            document, attachment, practice=practice
        )

        metadata = {
            "document-reference-id": document.id,
            "attachment-index": str(index),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            metadata["correlation-id"] = correlation_id

        upload = await self.blob_store.upload(
            destination.bucket,
            key,
            payload.data,
            content_type=content_type,
            tags=tags,
            metadata=metadata,
        )
        return ArchivedDocument(
            upload=upload,
            document_reference_id=document.id,
            attachment_index=index,
            is_embedded=attachment.is_embedded,
            binary_id=attachment.binary_id,
            filename=file_name,
        )


def build_document_download_service(
    settings: Settings, not_found_tracker: Optional[NotFoundTracker] = None
) -> DocumentDownloadService:
    """Wire a service from settings with the production collaborators."""
    http = HealthLakeHttpClient.from_settings(settings)
    rate_limiter = TokenBucketRateLimiter.from_settings(settings)
    retry_policy = ExponentialBackoffRetryPolicy.from_settings(settings)
    tracker = not_found_tracker or NotFoundTracker(settings.not_found_log_dir)

    return DocumentDownloadService(
        paginator=BundlePaginator(http, rate_limiter, retry_policy),
        fetcher=BinaryFetcher(http, tracker, rate_limiter, retry_policy),
        blob_store=S3BlobStore.from_settings(settings),
        gate=ConcurrencyGate(settings.max_concurrent_downloads),
        file_organizer=FileOrganizer(settings.s3_key_prefix),
    )
