"""Append-only log of Binary resources that HealthLake reported as missing.

Note: Rows contain patient identifiers (PHI). The log directory must be
access controlled.
"""

import asyncio
import csv
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from fhir_documents.utils.correlation import get_correlation_id
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

CSV_HEADER = [
    "Timestamp",
    "BinaryId",
    "FullUrl",
    "PatientId",
    "DocumentReferenceId",
    "CorrelationId",
]


@dataclass(frozen=True)
class NotFoundRecord:
    """A Binary that could not be found."""

    binary_id: str
    full_url: str
    patient_id: Optional[str] = None
    document_reference_id: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> List[str]:
        return [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            self.binary_id,
            self.full_url,
            self.patient_id or "",
            self.document_reference_id or "",
            self.correlation_id or "",
        ]


class NotFoundTracker:
    """Records missing Binaries to ``not_found_binaries_<timestamp>.csv``.

    Recording never raises: persistence failures are logged and the record is
    still kept in memory for the rest of the session.
    """

    def __init__(self, log_dir: Optional[str] = None):
        """Initialize tracker.

        Args:
            log_dir: Directory for the CSV file, defaults to the working directory
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self._path = os.path.join(
            log_dir or os.getcwd(), f"not_found_binaries_{timestamp}.csv"
        )
        self._lock = asyncio.Lock()
        self._records: List[NotFoundRecord] = []

    def log_location(self) -> str:
        """Path of the CSV file this tracker appends to."""
        return self._path

    def records(self) -> List[NotFoundRecord]:
        """Records captured during this session."""
        return list(self._records)

    async def record(
        self,
        binary_id: str,
        full_url: str,
        patient_id: Optional[str] = None,
        document_reference_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Append a not-found record.

        Args:
            binary_id: Id of the missing Binary
            full_url: URL that returned 404
            patient_id: Patient the Binary belongs to
            document_reference_id: DocumentReference that referenced it
            correlation_id: Defaults to the current correlation id
        """
        entry = NotFoundRecord(
            binary_id=binary_id,
            full_url=full_url,
            patient_id=patient_id,
            document_reference_id=document_reference_id,
            correlation_id=correlation_id or get_correlation_id(),
        )

        logger.warning(
            "binary_not_found",
            binary_id=binary_id,
            full_url=full_url,
            patient_id=patient_id or "N/A",
            document_reference_id=document_reference_id or "N/A",
        )

        async with self._lock:
            self._records.append(entry)
            try:
                loop = asyncio.get_event_loop()
                await loop.run_in_executor(None, self._append_row, entry)
            except Exception as e:  # pylint: disable=broad-except
                logger.error(
                    "not_found_log_write_failed",
                    path=self._path,
                    binary_id=binary_id,
                    error=str(e),
                )

    def _append_row(self, entry: NotFoundRecord) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        write_header = not os.path.exists(self._path)
        with open(self._path, "a", newline="", encoding="utf-8") as handle:
            if write_header:
                csv.writer(handle).writerow(CSV_HEADER)
                logger.info("not_found_log_created", path=self._path)
            csv.writer(handle, quoting=csv.QUOTE_ALL).writerow(entry.to_row())
