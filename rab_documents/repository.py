from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from django.conf import settings
from django.utils import timezone

from price_resolution.monitoring import record_blocked_mutation
from rab_documents.services.document import Document
from rab_documents.validators import validate_header
from rab_items.services.item_store import MutationBlocked

logger = logging.getLogger(__name__)


class DocumentNotFound(Exception):
    pass


class DocumentChanged(MutationBlocked):
    """The stored document was saved, locked or approved after it was loaded."""


DocumentVersion = Tuple[Optional[datetime], bool, str]


class DocumentRepository(Protocol):
    def get(self, document_id: str) -> Document:
        ...

    def list(self) -> List[Document]:
        ...

    def create(self, payload: Mapping[str, Any]) -> Document:
        ...

    def save(self, document: Document) -> Document:
        ...


def _header_with_defaults(payload: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned = validate_header(payload)
    defaults = settings.RAB_EDITOR
    cleaned["creator_name"] = cleaned["creator_name"] or defaults["DEFAULT_CREATOR_NAME"]
    cleaned["approver_name"] = cleaned["approver_name"] or defaults["DEFAULT_APPROVER_NAME"]
    return cleaned


class InMemoryDocumentRepository:
    """Keeps serialized copies so callers never share state with the stored record."""

    def __init__(self) -> None:
        self._rows: Dict[str, dict] = {}

    def get(self, document_id: str) -> Document:
        row = self._rows.get(document_id)
        if row is None:
            raise DocumentNotFound(document_id)
        return Document.from_dict(copy.deepcopy(row))

    def list(self) -> List[Document]:
        return [Document.from_dict(copy.deepcopy(row)) for row in self._rows.values()]

    def create(self, payload: Mapping[str, Any]) -> Document:
        now = timezone.now()
        document = Document(
            id=f"doc-{uuid.uuid4().hex[:12]}",
            created_at=now,
            updated_at=now,
            **_header_with_defaults(payload),
        )
        self._rows[document.id] = document.to_dict()
        return document

    def save(self, document: Document) -> Document:
        document.updated_at = timezone.now()
        self._rows[document.id] = copy.deepcopy(document.to_dict())
        return document


class DjangoDocumentRepository:
    """Documents stored in the ``RabDocument`` table."""

    def __init__(self) -> None:
        from rab_documents.models import RabDocument

        self.Model = RabDocument

    @staticmethod
    def _to_document(row) -> Document:
        return Document.from_dict(
            {
                "id": row.pk,
                "kind": row.kind,
                "empr": row.empr,
                "project_name": row.project_name,
                "pic": row.pic,
                "creator_name": row.creator_name,
                "approver_name": row.approver_name,
                "work_duration_days": row.work_duration_days,
                "status": row.status,
                "is_locked": row.is_locked,
                "revision_label": row.revision_label,
                "items": row.items,
                "revision_history": row.revision_history,
                "working_state": row.working_state,
                "approval_request": row.approval_request,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
            }
        )

    def get(self, document_id: str) -> Document:
        try:
            row = self.Model.objects.get(pk=document_id)
        except self.Model.DoesNotExist:
            raise DocumentNotFound(document_id) from None
        return self._to_document(row)

    def list(self) -> List[Document]:
        return [self._to_document(row) for row in self.Model.objects.all()]

    def create(self, payload: Mapping[str, Any]) -> Document:
        cleaned = _header_with_defaults(payload)
        cleaned["kind"] = cleaned["kind"].value
        row = self.Model.objects.create(**cleaned)
        logger.info("Document created: id=%s kind=%s project=%s", row.pk, row.kind, row.project_name)
        return self._to_document(row)

    def save(self, document: Document) -> Document:
        data = document.to_dict()
        fields = {
            name: data[name]
            for name in (
                "kind",
                "empr",
                "project_name",
                "pic",
                "creator_name",
                "approver_name",
                "work_duration_days",
                "status",
                "is_locked",
                "revision_label",
                "items",
                "revision_history",
                "working_state",
                "approval_request",
            )
        }
        row, _ = self.Model.objects.update_or_create(pk=document.id, defaults=fields)
        document.created_at = row.created_at
        document.updated_at = row.updated_at
        return document


def default_repository() -> DjangoDocumentRepository:
    return DjangoDocumentRepository()


def document_version(document: Document) -> DocumentVersion:
    return (document.updated_at, document.is_locked, document.status)


def save_if_unchanged(repository: DocumentRepository, document: Document, loaded: DocumentVersion) -> Document:
    """Persist ``document`` only when the stored copy is still the one it was loaded from.

    Raises ``DocumentChanged`` when another request saved or locked the
    document in the meantime; nothing is written in that case.
    """
    current = document_version(repository.get(document.id))
    if current != loaded:
        reason = "Dokumen telah diubah atau dikunci oleh proses lain. Muat ulang dokumen lalu ulangi."
        logger.warning("Document %s changed since it was loaded, refusing to save", document.id)
        record_blocked_mutation(document.id, "save", reason)
        raise DocumentChanged(reason)
    return repository.save(document)
