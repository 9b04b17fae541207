"""Builders for FHIR payloads used across the test suite."""

import base64
from typing import Any, Dict, List, Optional

BASE_URL = "https://healthlake.us-east-1.amazonaws.com/datastore/ds-1/r4"
PRACTICE_EXTENSION_URL = "https://fhir.athena.io/StructureDefinition/ah-practice"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def embedded_attachment(
    data: bytes, content_type: str = "text/plain", title: Optional[str] = None
) -> Dict[str, Any]:
    attachment: Dict[str, Any] = {"contentType": content_type, "data": b64(data)}
    if title:
        attachment["title"] = title
    return {"attachment": attachment}


def binary_attachment(
    binary_id: str, content_type: str = "application/pdf", title: Optional[str] = None
) -> Dict[str, Any]:
    attachment: Dict[str, Any] = {
        "contentType": content_type,
        "url": f"Binary/{binary_id}",
    }
    if title:
        attachment["title"] = title
    return {"attachment": attachment}


def document_reference(
    doc_id: str,
    patient_id: str = "patient-1",
    content: Optional[List[Dict[str, Any]]] = None,
    status: str = "current",
    practice_reference: Optional[str] = None,
) -> Dict[str, Any]:
    resource: Dict[str, Any] = {
        "resourceType": "DocumentReference",
        "id": doc_id,
        "status": status,
        "subject": {"reference": f"Patient/{patient_id}"},
        "type": {
            "coding": [
                {
                    "system": "http://loinc.org",
                    "code": "34133-9",
                    "display": "Summary",
                }
            ]
        },
        "content": content if content is not None else [],
    }
    if practice_reference:
        resource["extension"] = [
            {
                "url": PRACTICE_EXTENSION_URL,
                "valueReference": {"reference": practice_reference},
            }
        ]
    return resource


def bundle(
    resources: List[Dict[str, Any]],
    next_url: Optional[str] = None,
    bundle_type: str = "searchset",
    total: Optional[int] = None,
) -> Dict[str, Any]:
    page: Dict[str, Any] = {
        "resourceType": "Bundle",
        "type": bundle_type,
        "entry": [{"resource": resource} for resource in resources],
        "link": [{"relation": "self", "url": "https://example.invalid/self"}],
    }
    if total is not None:
        page["total"] = total
    if next_url:
        page["link"].append({"relation": "next", "url": next_url})
    return page


def binary(
    data: bytes, content_type: Optional[str] = "application/pdf"
) -> Dict[str, Any]:
    resource: Dict[str, Any] = {"resourceType": "Binary", "data": b64(data)}
    if content_type:
        resource["contentType"] = content_type
    return resource
