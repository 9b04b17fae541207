"""FHIR resource models used by the document archive.

Only the fields the archive pipeline needs are modelled; unknown fields are
ignored so that server-side additions never break parsing.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

PRACTICE_EXTENSION_URL = "https://fhir.athena.io/StructureDefinition/ah-practice"
ENTERED_IN_ERROR = "entered-in-error"


def last_segment(reference: Optional[str]) -> Optional[str]:
    """Return the last path segment of a FHIR reference or URL."""
    if not reference:
        return None
    segment = reference.rstrip("/").split("/")[-1]
    return segment or None


class FHIRModel(BaseModel):
    """Base for FHIR JSON models."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Coding(FHIRModel):
    """FHIR Coding."""

    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None


class CodeableConcept(FHIRModel):
    """FHIR CodeableConcept."""

    coding: List[Coding] = Field(default_factory=list)
    text: Optional[str] = None


class Reference(FHIRModel):
    """FHIR Reference."""

    reference: Optional[str] = None
    display: Optional[str] = None


class Extension(FHIRModel):
    """FHIR Extension carrying a reference or string value."""

    url: Optional[str] = None
    value_reference: Optional[Reference] = Field(default=None, alias="valueReference")
    value_string: Optional[str] = Field(default=None, alias="valueString")


class Meta(FHIRModel):
    """FHIR resource metadata."""

    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    version_id: Optional[str] = Field(default=None, alias="versionId")


class Attachment(FHIRModel):
    """Content descriptor of a DocumentReference."""

    content_type: Optional[str] = Field(default=None, alias="contentType")
    data: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_embedded(self) -> bool:
        """True when the content travels inline as base64."""
        return bool(self.data)

    @property
    def binary_id(self) -> Optional[str]:
        """Id of the referenced Binary; None for embedded content."""
        if self.is_embedded:
            return None
        return last_segment(self.url)


class DocumentContent(FHIRModel):
    """One entry of DocumentReference.content."""

    attachment: Optional[Attachment] = None


class DocumentContext(FHIRModel):
    """DocumentReference.context."""

    encounter: List[Reference] = Field(default_factory=list)


@dataclass(frozen=True)
class PracticeInfo:
    """Practice owning a document."""

    id: str
    name: str = "practice"

    @property
    def folder_name(self) -> str:
        return f"{self.name}_{self.id}"


class DocumentReference(FHIRModel):
    """FHIR DocumentReference, reduced to what archiving needs."""

    resource_type: str = Field(default="DocumentReference", alias="resourceType")
    id: str
    status: str = "current"
    subject: Optional[Reference] = None
    type: Optional[CodeableConcept] = None
    category: List[CodeableConcept] = Field(default_factory=list)
    content: List[DocumentContent] = Field(default_factory=list)
    context: Optional[DocumentContext] = None
    meta: Optional[Meta] = None
    date: Optional[str] = None
    extension: List[Extension] = Field(default_factory=list)

    @property
    def patient_id(self) -> Optional[str]:
        """Patient id taken from the subject reference."""
        return last_segment(self.subject.reference if self.subject else None)

    @property
    def attachments(self) -> List[Optional[Attachment]]:
        """Attachments in content order; index positions are stable."""
        return [content.attachment for content in self.content]

    @property
    def is_entered_in_error(self) -> bool:
        return self.status == ENTERED_IN_ERROR

    def practice_info(self) -> Optional[PracticeInfo]:
        """Practice encoded in the practice extension reference.

        The reference ends in ``a-<n>-<practice id>``; the third dash separated
        part is the practice id.
        """
        for extension in self.extension:
            if extension.url != PRACTICE_EXTENSION_URL or not extension.value_reference:
                continue
            segment = last_segment(extension.value_reference.reference)
            if not segment:
                return None
            parts = segment.split("-")
            if len(parts) >= 3:
                name = extension.value_reference.display or "practice"
                return PracticeInfo(id=parts[2], name=name)
            return None
        return None


class BundleLink(FHIRModel):
    """Bundle.link entry."""

    relation: Optional[str] = None
    url: Optional[str] = None


class BundleEntry(FHIRModel):
    """Bundle.entry; the resource is kept raw and parsed on demand."""

    full_url: Optional[str] = Field(default=None, alias="fullUrl")
    resource: Optional[Dict[str, Any]] = None


class Bundle(FHIRModel):
    """FHIR Bundle page returned by a search."""

    resource_type: str = Field(alias="resourceType")
    type: Optional[str] = None
    total: Optional[int] = None
    entry: List[BundleEntry] = Field(default_factory=list)
    link: List[BundleLink] = Field(default_factory=list)

    def is_searchset(self) -> bool:
        return self.resource_type == "Bundle" and self.type == "searchset"

    def next_link(self) -> Optional[str]:
        """URL of the next page, exactly as the server sent it."""
        for link in self.link:
            if link.relation == "next" and link.url:
                return link.url
        return None

    def document_references(self) -> List[DocumentReference]:
        """DocumentReference resources of this page, in entry order.

        Entries without an id or that fail to parse are skipped and logged.
        """
        documents: List[DocumentReference] = []
        for position, entry in enumerate(self.entry):
            resource = entry.resource
            if not resource or resource.get("resourceType") != "DocumentReference":
                continue
            if not resource.get("id"):
                logger.warning("document_reference_without_id", entry=position)
                continue
            try:
                documents.append(DocumentReference.model_validate(resource))
            except PydanticValidationError as e:
                logger.warning(
                    "document_reference_unparseable",
                    entry=position,
                    document_reference_id=resource.get("id"),
                    error=str(e),
                )
        return documents


class BinaryResource(FHIRModel):
    """FHIR Binary as returned by ``GET Binary/{id}``."""

    resource_type: str = Field(alias="resourceType")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    data: Optional[str] = None


@dataclass(frozen=True)
class BinaryPayload:
    """Decoded document bytes ready for storage."""

    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        """Size of the decoded bytes."""
        return len(self.data)
