#!/usr/bin/env python3
"""FHIR Document Archive CLI.

Command-line interface for archiving a patient's HealthLake documents to S3.
"""

import asyncio
import sys
from typing import List, Optional, Sequence

import click

from fhir_documents.config import get_settings
from fhir_documents.core.exceptions import DocumentArchiveError, FailureRecord
from fhir_documents.healthcare.models import DocumentReference
from fhir_documents.services.document_download_service import (
    ArchiveDestination,
    ArchiveOutcome,
    DocumentDownloadService,
    build_document_download_service,
    summarize,
)
from fhir_documents.utils.concurrency import ConcurrencyGate
from fhir_documents.utils.correlation import correlation_scope
from fhir_documents.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _echo_inventory(patient_id: str, documents: Sequence[DocumentReference]) -> None:
    attachments = sum(len(document.content) for document in documents)
    click.echo("=" * 40)
    click.echo(f"Patient ID: {patient_id}")
    click.echo(f"Total DocumentReferences found: {len(documents)}")
    click.echo(f"Total documents in all references: {attachments}")
    click.echo("-" * 40)
    for document in documents:
        content_types = [
            a.content_type or "unknown" for a in document.attachments if a is not None
        ]
        described = ", ".join(content_types) if content_types else "no-content"
        if len(document.content) > 1:
            click.echo(
                f"  {document.id} | {len(document.content)} documents | {described}"
            )
        else:
            click.echo(f"  {document.id} | {described}")
    click.echo("=" * 40)


def _echo_summary(outcomes: List[ArchiveOutcome]) -> None:
    summary = summarize(outcomes)
    click.echo("\nArchive complete:")
    click.echo(f"  Files processed: {summary.total}")
    click.echo(f"  Succeeded: {summary.succeeded}")
    click.echo(f"  Failed: {summary.failed}")
    click.echo(f"  Bytes archived: {summary.total_bytes}")
    click.echo(f"  Multipart uploads: {summary.used_multipart}")

    failures = [o for o in outcomes if isinstance(o, FailureRecord)]
    if failures:
        click.echo("\nErrors encountered:")
        for failure in failures[:10]:
            click.echo(
                f"  - {failure.document_reference_id}[{failure.attachment_index}] "
                f"{failure.kind.value}: {failure.message}"
            )
        if len(failures) > 10:
            click.echo(f"  ... and {len(failures) - 10} more")


async def _archive(
    service: DocumentDownloadService,
    patient_id: str,
    destination: ArchiveDestination,
    document_reference_id: Optional[str],
    practice_id: Optional[str],
    force: bool,
) -> Optional[List[ArchiveOutcome]]:
    try:
        with correlation_scope() as correlation_id:
            logger.info("archive_requested", patient_id=patient_id)
            documents = await service.discover(patient_id, document_reference_id)
            _echo_inventory(patient_id, documents)
            click.echo(f"Correlation ID: {correlation_id}")

            if not force and not click.confirm(
                "Do you want to proceed with downloading these documents to S3?"
            ):
                click.echo("Download cancelled by user.")
                return None

            return await service.archive_documents(
                patient_id, documents, destination, practice_id=practice_id
            )
    finally:
        await service.close()


@click.group()
def cli() -> None:
    """FHIR Document Archive Tools."""
    pass  # pylint: disable=unnecessary-pass


@cli.command()
@click.argument("patient_id")
@click.option("--bucket", "-b", help="Destination S3 bucket (default from settings)")
@click.option("--prefix", "-p", help="Key prefix (default from settings)")
@click.option(
    "--document-reference-id",
    "-d",
    help="Archive only this DocumentReference",
)
@click.option("--practice-id", help="Override the practice id of every document")
@click.option(
    "--concurrency",
    "-c",
    type=click.IntRange(min=1),
    help="Maximum concurrent downloads",
)
@click.option("--force", "-f", is_flag=True, help="Skip the confirmation prompt")
def archive(
    patient_id: str,
    bucket: Optional[str],
    prefix: Optional[str],
    document_reference_id: Optional[str],
    practice_id: Optional[str],
    concurrency: Optional[int],
    force: bool,
) -> None:
    """Archive all documents of PATIENT_ID to S3."""
    settings = get_settings()
    setup_logging(settings)

    bucket = bucket or settings.s3_bucket_name
    if not bucket:
        raise click.UsageError("No bucket given and S3_BUCKET_NAME is not set")

    service = build_document_download_service(settings)
    if concurrency:
        service.gate = ConcurrencyGate(concurrency)
    destination = ArchiveDestination(bucket=bucket, key_prefix=prefix)

    try:
        outcomes = asyncio.run(
            _archive(
                service,
                patient_id,
                destination,
                document_reference_id,
                practice_id,
                force,
            )
        )
    except DocumentArchiveError as e:
        click.echo(f"Archive failed ({e.kind.value}): {e.message}", err=True)
        sys.exit(2)

    if outcomes is None:
        return

    _echo_summary(outcomes)
    tracker = service.fetcher.not_found_tracker
    if tracker.records():
        click.echo(f"\nMissing binaries logged to: {tracker.log_location()}")

    if any(isinstance(o, FailureRecord) for o in outcomes):
        sys.exit(1)


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
