"""
Data models shared by the connector components.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .deferred import Deferred

Document = Dict[str, Any]


@dataclass
class TransportResponse:
    """Raw outcome of one HTTP exchange."""
    status_code: int
    body: Any
    reason: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class ResponseEnvelope:
    """Decoded success body: the primary value plus optional paging metadata."""
    primary: Any
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def decode(cls, body: Any) -> "ResponseEnvelope":
        """Unwrap ``{"metadata": ..., "records": ...}`` bodies; keep anything else as is."""
        if isinstance(body, dict) and "metadata" in body and "records" in body:
            return cls(primary=body["records"], metadata=body["metadata"])
        return cls(primary=body)


@dataclass
class Task:
    """One outbound call waiting for a dispatch worker."""
    url: str
    method: str
    deferred: Deferred
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    params: Optional[Dict[str, Any]] = None


class VersionInformation(BaseModel):
    """One entry of a document's history."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="_id")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    updated_by: Optional[str] = Field(default=None, alias="updatedBy")


class ReferencePathStep(BaseModel):
    """Step from a parent document into one of its sub-document arrays."""

    model_config = ConfigDict(populate_by_name=True)

    field: str
    object_id: str = Field(alias="objectId")


class DocumentReference(BaseModel):
    """Pointer to a (sub-)document: a root document plus a path into it."""

    model_config = ConfigDict(populate_by_name=True)

    root_document_entity_type: Optional[str] = Field(default=None, alias="rootDocumentEntityType")
    root_document_id: Optional[str] = Field(default=None, alias="rootDocumentId")
    path: List[ReferencePathStep] = Field(default_factory=list)

    @property
    def refers_to_parent(self) -> bool:
        return (self.root_document_entity_type or "").split(".")[0] == "parent"


@dataclass
class Credentials:
    """Api key and/or access token; may be changed after the client is built."""
    api_key: Optional[str] = None
    token: Optional[str] = None

    @property
    def present(self) -> bool:
        return bool(self.api_key or self.token)


OBJECT_ID_LENGTH = 24


def is_object_id(value: Any) -> bool:
    """Whether ``value`` has the shape of a document id."""
    return isinstance(value, str) and len(value) == OBJECT_ID_LENGTH
