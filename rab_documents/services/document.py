from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from django.utils.dateparse import parse_datetime

from rab_documents.services.kinds import DocumentKind
from rab_items.models import LineItem, items_from_dicts, items_to_dicts

STATUS_PENDING = "Pending"
STATUS_AWAITING_APPROVAL = "Menunggu Approval"
STATUS_FINAL = "Selesai"

INITIAL_REVISION_LABEL = "manual"
HEADER_FIELDS = ("empr", "project_name", "pic", "creator_name", "approver_name", "work_duration_days")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(str(value))


@dataclass(frozen=True)
class RevisionSnapshot:
    """Items as they were when a revision was started. Never modified afterwards."""

    timestamp: datetime
    items: Tuple[LineItem, ...]

    def to_dict(self) -> dict:
        return {"timestamp": _iso(self.timestamp), "items": items_to_dicts(self.items)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RevisionSnapshot":
        return cls(timestamp=_parse_dt(data.get("timestamp")), items=items_from_dicts(data.get("items")))


@dataclass(frozen=True)
class ApprovalRequest:
    requested_at: datetime
    requested_by: str
    sent_to: str

    def to_dict(self) -> dict:
        return {"requested_at": _iso(self.requested_at), "requested_by": self.requested_by, "sent_to": self.sent_to}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ApprovalRequest"]:
        if not data:
            return None
        return cls(
            requested_at=_parse_dt(data.get("requested_at")),
            requested_by=str(data.get("requested_by") or ""),
            sent_to=str(data.get("sent_to") or ""),
        )


@dataclass
class Document:
    """A RAB/BQ document: header, committed items, revision history and unsaved work."""

    id: str
    kind: DocumentKind = DocumentKind.RAB
    empr: str = ""
    project_name: str = ""
    pic: str = ""
    creator_name: str = ""
    approver_name: str = ""
    work_duration_days: Optional[int] = None
    status: str = STATUS_PENDING
    is_locked: bool = False
    revision_label: str = INITIAL_REVISION_LABEL
    items: Tuple[LineItem, ...] = ()
    revision_history: List[RevisionSnapshot] = field(default_factory=list)
    working_state: Optional[Dict[str, Any]] = None
    approval_request: Optional[ApprovalRequest] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def header(self) -> dict:
        return {name: getattr(self, name) for name in HEADER_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            **self.header(),
            "status": self.status,
            "is_locked": self.is_locked,
            "revision_label": self.revision_label,
            "items": items_to_dicts(self.items),
            "revision_history": [snapshot.to_dict() for snapshot in self.revision_history],
            "working_state": self.working_state,
            "approval_request": self.approval_request.to_dict() if self.approval_request else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Document":
        duration = data.get("work_duration_days")
        return cls(
            id=str(data["id"]),
            kind=DocumentKind.parse(data.get("kind") or DocumentKind.RAB.value),
            empr=str(data.get("empr") or ""),
            project_name=str(data.get("project_name") or ""),
            pic=str(data.get("pic") or ""),
            creator_name=str(data.get("creator_name") or ""),
            approver_name=str(data.get("approver_name") or ""),
            work_duration_days=int(duration) if duration not in (None, "") else None,
            status=str(data.get("status") or STATUS_PENDING),
            is_locked=bool(data.get("is_locked")),
            revision_label=str(data.get("revision_label") or INITIAL_REVISION_LABEL),
            items=items_from_dicts(data.get("items")),
            revision_history=[RevisionSnapshot.from_dict(s) for s in data.get("revision_history") or ()],
            working_state=data.get("working_state"),
            approval_request=ApprovalRequest.from_dict(data.get("approval_request")),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )
